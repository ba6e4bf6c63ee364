#!/usr/bin/env python3

"""
DESCRIPTION
  Read an encrypted DLMS smart meter (M-Bus or HDLC customer interface)
  via serial port or TCP and publish its readings to an MQTT broker

2 Worker threads:
  - Meter reader: bytes -> frames -> decrypted messages -> OBIS registers -> MQTT
  - MQTT client

Configure via environment variables, see config.py


        This program is free software: you can redistribute it and/or modify
        it under the terms of the GNU General Public License as published by
        the Free Software Foundation, either version 3 of the License, or
        (at your option) any later version.

        This program is distributed in the hope that it will be useful,
        but WITHOUT ANY WARRANTY; without even the implied warranty of
        MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
        GNU General Public License for more details.

        You should have received a copy of the GNU General Public License
        along with this program.  If not, see <http://www.gnu.org/licenses/>.

"""

import signal
import socket
import sys
import threading
import time

from smart_meter import __version__
from smart_meter import config as cfg
from smart_meter import mqtt as mqtt
from smart_meter.acquisition import TaskReadMeter
from smart_meter.dlms import Dlms
from smart_meter.log import logger, stats_logger
from smart_meter.transport import open_stream

# DEFAULT exit code
# status=1/FAILURE
__exit_code = 1

t_threads_stopper = threading.Event()
t_mqtt_stopper = threading.Event()


def _single_instance():
    """Ensure only one instance runs; returns the lock socket, which must stay open."""
    if sys.platform != "linux":
        return None

    # Abstract socket, prefixed with null
    lockfile = "\0smart_meter_lockfile"
    s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        s.bind(lockfile)
    except OSError as err:
        logger.error("instance_already_running", error=str(err))
        sys.exit(1)
    return s


def _load_dlms():
    try:
        key = cfg.parse_key(cfg.METER_KEY)
        auth_key = cfg.parse_key(cfg.METER_AUTH_KEY) if cfg.METER_AUTH_KEY else None
    except ValueError as e:
        logger.error("meter_key_invalid", error=str(e), env="SMART_METER_KEY")
        sys.exit(1)
    return Dlms(key, auth_key)


def close():
    """Close the application gracefully."""
    stats_logger.stop()
    logger.info("application_exiting", exit_code=__exit_code)
    sys.exit(__exit_code)


def exit_gracefully(signal, stackframe):
    """Exit gracefully on signal.

    Args:
        signal: the associated signalnumber
        stackframe: current stack frame
    """
    logger.debug("signal_received", signal=signal)

    # status=0/SUCCESS
    global __exit_code
    __exit_code = 0

    t_threads_stopper.set()
    logger.info("graceful_shutdown_initiated")


def main():
    """Main entry point for the application."""
    lock = _single_instance()
    logger.info("application_started", version=__version__, link=cfg.METER_LINK)

    dlms = _load_dlms()

    try:
        stream = open_stream(
            cfg.ser_port,
            baudrate=cfg.ser_baudrate,
            parity=cfg.ser_parity,
            bytesize=cfg.ser_bytesize,
            stopbits=cfg.ser_stopbits,
        )
    except (OSError, ValueError) as e:
        logger.error("meter_source_open_failed", port=cfg.ser_port, error_type=type(e).__name__, error=str(e))
        return

    stats_logger.start()

    t_mqtt = mqtt.MQTTClient(
        mqtt_broker=cfg.MQTT_BROKER,
        mqtt_port=cfg.MQTT_PORT,
        mqtt_client_id=cfg.MQTT_CLIENT_ID,
        mqtt_qos=cfg.MQTT_QOS,
        mqtt_protocol=mqtt.MQTTv5,
        username=cfg.MQTT_USERNAME,
        password=cfg.MQTT_PASSWORD,
        mqtt_stopper=t_mqtt_stopper,
        worker_threads_stopper=t_threads_stopper,
        transport=cfg.MQTT_TRANSPORT,
        use_tls=cfg.MQTT_USE_TLS,
        ws_path=cfg.MQTT_WS_PATH,
    )
    t_meter = TaskReadMeter(
        t_threads_stopper,
        t_mqtt,
        stream,
        dlms,
        link=cfg.METER_LINK,
        topic_prefix=cfg.MQTT_TOPIC_PREFIX,
        maxrate=cfg.MQTT_MAXRATE,
    )

    t_mqtt.will_set(cfg.MQTT_TOPIC_PREFIX + "/status", payload="offline", qos=cfg.MQTT_QOS, retain=True)
    t_mqtt.start()
    t_meter.start()

    t_mqtt.set_status(cfg.MQTT_TOPIC_PREFIX + "/status", "online", retain=True)
    t_mqtt.do_publish(cfg.MQTT_TOPIC_PREFIX + "/sw-version", f"main={__version__}", retain=True)

    # Block till a signal or a failing thread sets the stopper
    while not t_threads_stopper.wait(1):
        pass
    t_meter.stop()
    t_meter.join(timeout=5)
    logger.debug("meter_thread_exited")

    t_mqtt.set_status(cfg.MQTT_TOPIC_PREFIX + "/status", "offline", retain=True)

    # Give the mqtt thread a moment to flush queued messages
    time.sleep(1)
    t_mqtt_stopper.set()
    t_mqtt.join(timeout=5)

    if lock is not None:
        lock.close()
    logger.debug("main_completed")


if __name__ == "__main__":
    logger.debug("entrypoint_started")
    signal.signal(signal.SIGINT, exit_gracefully)
    signal.signal(signal.SIGTERM, exit_gracefully)

    main()

    logger.debug("entrypoint_completed")
    close()
