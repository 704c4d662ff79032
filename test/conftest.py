import logging

import paho.mqtt.client as mqtt
import pytest


class FakeMessageInfo:
    """Stands in for paho's MQTTMessageInfo.

    `stall` keeps the message unpublished for any bounded wait; an unbounded
    wait completes it, like a broker that eventually catches up.
    """

    def __init__(self, rc=mqtt.MQTT_ERR_SUCCESS, stall=False, wait_error=None):
        self.rc = rc
        self.stall = stall
        self.wait_error = wait_error
        self.wait_timeouts = []
        self._published = False

    def wait_for_publish(self, timeout=None):
        self.wait_timeouts.append(timeout)
        if self.wait_error is not None:
            raise self.wait_error
        if not self.stall or timeout is None:
            self._published = True

    def is_published(self):
        return self._published


class FakeClient:
    def __init__(self, info_factory=FakeMessageInfo):
        self.info_factory = info_factory
        self.published = []
        self.infos = []
        self.loop_stopped = False
        self.disconnected = False

    def publish(self, topic, payload=None, qos=0, retain=False):
        self.published.append((topic, payload, qos, retain))
        info = self.info_factory()
        self.infos.append(info)
        return info

    @property
    def payloads(self):
        return [payload for _, payload, _, _ in self.published]

    def loop_stop(self):
        self.loop_stopped = True

    def disconnect(self):
        self.disconnected = True


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def make_record():
    def _make(message="started", name="core", level=logging.INFO, args=None, **attrs):
        record = logging.LogRecord(name, level, __file__, 42, message, args, None)
        for key, value in attrs.items():
            setattr(record, key, value)
        return record
    return _make


@pytest.fixture
def clean_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    factory = logging.getLogRecordFactory()
    yield root
    root.handlers[:] = handlers
    root.setLevel(level)
    logging.setLogRecordFactory(factory)
