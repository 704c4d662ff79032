# Handler which logs messages to a MQTT broker

import itertools
import json
import logging
from dataclasses import dataclass, fields
from datetime import datetime
from enum import Enum
from typing import Optional, Union

import paho.mqtt.client as mqtt

DEFAULT_PUBLISH_TIMEOUT_SECONDS = 5.0
PUBLISH_QOS = 0
PUBLISH_RETAIN = False


class MQTTLoggingError(Exception):
    pass


class SerializationError(MQTTLoggingError):
    """Raised when a record cannot be rendered or encoded. Nothing is published."""


class PublishError(MQTTLoggingError):
    """Raised when the MQTT client reports a failed publish.

    `rc` is the return code exactly as reported by paho.
    """

    def __init__(self, rc, message: Optional[str] = None):
        super().__init__(message or f"Publish failed: {mqtt.error_string(rc)}")
        self.rc = rc


class PublishTimeoutError(PublishError):
    """Raised in strict mode when a publish is not completed in time.

    The client reported no failure, so `rc` is None.
    """


class LogStyle(str, Enum):
    # Existing logging format untouched (default)
    FORMATTED = "FORMATTED"
    # Only the message
    MINIMAL = "MINIMAL"
    # The message as a JSON object for ease of parsing
    JSON = "JSON"

    @classmethod
    def parse(cls, token: Union["LogStyle", str, None]) -> "LogStyle":
        """Map a style token to a member. Tokens match exactly; anything else is FORMATTED."""
        if isinstance(token, cls):
            return token
        try:
            return cls(token)
        except ValueError:
            return cls.FORMATTED


@dataclass(frozen=True)
class LogMessage:
    """A full log entry, serialized when LogStyle.JSON is used."""

    id: int = 0
    pid: int = 0
    time: Optional[datetime] = None
    level: str = ""
    module: str = ""
    program: str = ""
    message: str = ""
    long_file: str = ""
    short_file: str = ""
    call_path: str = ""

    _KEYS = {
        "long_file": "longFileName",
        "short_file": "shortFileName",
        "call_path": "callPath",
    }

    @classmethod
    def from_record(cls, record: logging.LogRecord) -> "LogMessage":
        return cls(
            id=getattr(record, "id", 0),
            time=datetime.fromtimestamp(record.created).astimezone(),
            message=record.getMessage(),
            level=record.levelname,
            module=record.name,
        )

    def to_dict(self) -> dict:
        entry = {}
        for field in fields(self):
            value = getattr(self, field.name)
            if not value:
                continue
            if isinstance(value, datetime):
                value = value.isoformat()
            entry[self._KEYS.get(field.name, field.name)] = value
        return entry

    def to_json(self) -> str:
        try:
            return json.dumps(self.to_dict(), separators=(",", ":"), allow_nan=False)
        except (TypeError, ValueError) as e:
            raise SerializationError(f"Could not serialize log message: {e}") from e


class MQTTLoggingHandler(logging.Handler):
    def __init__(self, client: mqtt.Client, topic: str,
                 style: Union[LogStyle, str] = LogStyle.FORMATTED,
                 level=logging.NOTSET,
                 publish_timeout: float = DEFAULT_PUBLISH_TIMEOUT_SECONDS,
                 strict_timeout: bool = False):
        if client is None:
            raise ValueError("An MQTT client is required")
        if not topic:
            raise ValueError("An MQTT topic is required")
        super().__init__(level)
        self.mqtt_client = client
        self.topic = topic
        self.style = LogStyle.parse(style)
        self.publish_timeout = publish_timeout
        self.strict_timeout = strict_timeout

    def render(self, record: logging.LogRecord) -> str:
        if self.style is LogStyle.JSON:
            return LogMessage.from_record(record).to_json()
        if self.style is LogStyle.MINIMAL:
            return record.getMessage()
        # Caller location was fixed at record creation, so our frame never shows
        return self.format(record)

    @staticmethod
    def encode(message: str) -> bytes:
        # surrogateescape restores bytes that were decoded with it, e.g. os.fsdecode() file names
        try:
            return message.encode("utf-8", errors="surrogateescape")
        except UnicodeEncodeError as e:
            raise SerializationError(f"Could not encode log message: {e}") from e

    def publish_record(self, record: logging.LogRecord) -> None:
        """Render `record` and publish it, blocking until the client is done with it.

        Errors are raised to the caller and never logged here, since logging
        from inside a handler would recurse back into it.
        """
        payload = self.encode(self.render(record))
        info = self.mqtt_client.publish(self.topic, payload, qos=PUBLISH_QOS, retain=PUBLISH_RETAIN)
        try:
            info.wait_for_publish(timeout=self.publish_timeout)
            if not info.is_published():
                if self.strict_timeout:
                    raise PublishTimeoutError(
                        None, f"Publish to {self.topic} not completed within {self.publish_timeout}s")
                # The timeout is advisory: keep waiting until paho is done
                info.wait_for_publish()
        except (ValueError, RuntimeError) as e:
            # paho raises these while waiting on a message it could not queue
            raise PublishError(info.rc) from e
        if info.rc != mqtt.MQTT_ERR_SUCCESS:
            raise PublishError(info.rc)

    def emit(self, record):
        try:
            self.publish_record(record)
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)


def install_record_ids():
    """Stamp every new LogRecord with a sequential `id`, starting at 1."""
    current = logging.getLogRecordFactory()
    if getattr(current, "stamps_record_ids", False):
        return current

    counter = itertools.count(1)

    def factory(*args, **kwargs):
        record = current(*args, **kwargs)
        record.id = next(counter)
        return record

    factory.stamps_record_ids = True
    logging.setLogRecordFactory(factory)
    return factory
