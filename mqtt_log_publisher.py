'''
MQTT log publisher

Publishes log records to a MQTT topic: every line read from stdin is logged
under a configurable logger name, and the MQTT logging handler renders each
record as FORMATTED, MINIMAL or JSON text and publishes it to the log topic.
Supports configurable logging to file/stdout alongside MQTT and graceful
shutdown handling.

Copyright 2025 Robin Windey.
'''
import logging
import signal
import sys
import os
import argparse
import paho.mqtt.client as mqtt
from mqtt_logging_handler import MQTTLoggingHandler, LogStyle, install_record_ids

DEFAULT_LOG_FILE_NAME = os.path.join(sys.path[0], 'mqtt-log-publisher.log')
DEFAULT_LOG_LEVEL = 'INFO'
DEFAULT_LOG_FORMAT = '%(asctime)s %(levelname)s: %(message)s'
DEFAULT_LOGGER_NAME = 'stdin'

DEFAULT_MQTT_PORT = 1883
DEFAULT_MQTT_LOG_STYLE = LogStyle.FORMATTED.value

running = False

def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='MQTT log publisher - forwards log records to a MQTT topic')
    parser.add_argument('--mqtt-host', type=str, default=os.getenv('MQTT_HOST', None), help='MQTT host. Env: `MQTT_HOST`.', required=os.getenv('MQTT_HOST') is None)
    parser.add_argument('--mqtt-port', type=int, default=int(os.getenv('MQTT_PORT', str(DEFAULT_MQTT_PORT))), help=f'MQTT port. Env: `MQTT_PORT`. Default: {DEFAULT_MQTT_PORT}')
    parser.add_argument('--mqtt-user', type=str, default=os.getenv('MQTT_USER', None), help='MQTT username (optional). Env: `MQTT_USER`.')
    parser.add_argument('--mqtt-pass', type=str, default=os.getenv('MQTT_PASS', None), help='MQTT password (optional). Env: `MQTT_PASS`.')
    parser.add_argument('--mqtt-client-id', type=str, default=os.getenv('MQTT_CLIENT_ID', ''), help='MQTT client id (optional, random if empty). Env: `MQTT_CLIENT_ID`.')
    parser.add_argument('--mqtt-log-topic', type=str, default=os.getenv('MQTT_LOG_TOPIC', None), help='MQTT topic to publish log records to. Env: `MQTT_LOG_TOPIC`.', required=os.getenv('MQTT_LOG_TOPIC') is None)
    parser.add_argument('--mqtt-log-style', type=str, default=os.getenv('MQTT_LOG_STYLE', DEFAULT_MQTT_LOG_STYLE), help=f'Payload style (FORMATTED, MINIMAL, JSON). Unknown values fall back to FORMATTED. Env: `MQTT_LOG_STYLE`. Default: {DEFAULT_MQTT_LOG_STYLE}')
    parser.add_argument('--logger-name', type=str, default=os.getenv('LOGGER_NAME', DEFAULT_LOGGER_NAME), help=f'Logger (module) name stdin lines are logged under. Env: `LOGGER_NAME`. Default: {DEFAULT_LOGGER_NAME}')
    parser.add_argument('--log-file', type=str, default=os.getenv('LOG_FILE', DEFAULT_LOG_FILE_NAME), help=f'Log file name. If set to "stdout", program will log to stdout instead of file. Env: `LOG_FILE`. Default: {DEFAULT_LOG_FILE_NAME}')
    parser.add_argument('--log-level', type=str, default=os.getenv('LOG_LEVEL', DEFAULT_LOG_LEVEL), help=f'Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL). Env: `LOG_LEVEL`. Default: {DEFAULT_LOG_LEVEL}')
    return parser.parse_args(argv)

def get_log_level_enum(log_level: str):
    try:
        return getattr(logging, log_level.upper())
    except AttributeError:
        raise ValueError(f"Invalid log level: {log_level}. Must be one of DEBUG, INFO, WARNING, ERROR, CRITICAL.")

def setup_logging(log_file, log_level):
    logger = logging.getLogger()
    log_level_enum = get_log_level_enum(log_level)
    logger.setLevel(log_level_enum)

    if logger.hasHandlers():
        logger.handlers.clear()

    log_handler = logging.StreamHandler(sys.stdout) if log_file == "stdout" else logging.FileHandler(log_file)
    log_handler.setLevel(log_level_enum)
    log_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(log_handler)

def setup_mqtt_logging(log_level, mqtt_client, mqtt_log_topic, mqtt_log_style=DEFAULT_MQTT_LOG_STYLE):
    logger = logging.getLogger()
    log_level_enum = get_log_level_enum(log_level)

    mqtt_handler = MQTTLoggingHandler(mqtt_client, mqtt_log_topic, mqtt_log_style)
    mqtt_handler.setLevel(log_level_enum)
    mqtt_handler.setFormatter(logging.Formatter(DEFAULT_LOG_FORMAT))
    logger.addHandler(mqtt_handler)
    return mqtt_handler

def setup_mqtt(host, port, username=None, password=None, client_id=''):
    mqtt_client = mqtt.Client(callback_api_version=mqtt.CallbackAPIVersion.VERSION2, client_id=client_id)
    if username is not None and username != "":
        mqtt_client.username_pw_set(username, password)
    mqtt_client.connect(host, port)
    mqtt_client.loop_start()
    return mqtt_client

def open_input(stream):
    # Undecodable bytes are replaced so one bad line does not end the bridge
    if hasattr(stream, 'reconfigure'):
        stream.reconfigure(errors='replace')
    return stream

def forward_lines(lines, logger_name):
    logger = logging.getLogger(logger_name)
    for line in lines:
        if not running:
            break
        line = line.rstrip('\r\n')
        if line:
            logger.info(line)

def signal_handler(sig, frame):
    global running
    logging.info('Received signal to stop, exiting...')
    running = False
    # Reading stdin is retried after a signal, so unblock it by unwinding to main()
    raise KeyboardInterrupt

def main(argv=None):
    global running
    running = True

    signal.signal(signal.SIGTERM, signal_handler)
    signal.signal(signal.SIGINT, signal_handler)

    args = parse_args(argv)

    setup_logging(args.log_file, args.log_level)
    install_record_ids()

    mqtt_client = None
    mqtt_handler = None
    try:
        mqtt_client = setup_mqtt(args.mqtt_host,
                                 args.mqtt_port,
                                 args.mqtt_user,
                                 args.mqtt_pass,
                                 args.mqtt_client_id)

        mqtt_handler = setup_mqtt_logging(args.log_level, mqtt_client, args.mqtt_log_topic, args.mqtt_log_style)
        logging.debug(f"Publishing {args.logger_name} logs to MQTT topic {args.mqtt_log_topic}")

        forward_lines(open_input(sys.stdin), args.logger_name)
    except KeyboardInterrupt:
        logging.debug("Stopped while forwarding lines.")
    except Exception as e:
        logging.exception(e)
    finally:
        if mqtt_handler is not None:
            logging.getLogger().removeHandler(mqtt_handler)
        if mqtt_client is not None:
            logging.info("Disconnecting MQTT client.")
            mqtt_client.loop_stop()
            mqtt_client.disconnect()
    logging.info("Program stopped.")

if __name__ == "__main__":
    main()
