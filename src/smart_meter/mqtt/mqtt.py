"""
MQTT publisher thread using paho-mqtt

https://github.com/eclipse/paho.mqtt.python/blob/master/src/paho/mqtt/client.py
http://www.steves-internet-guide.com/mqttv5/

Publishes meter readings; never subscribes. The status topic is stored and
republished after every reconnect, and the last will marks the meter offline
when the connection drops.

LIMITATIONS
* MQTT v5 clean start is only used as "first connect only"


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

import json
import random
import socket
import ssl
import string
import threading
import time

import paho.mqtt as paho_mqtt
import paho.mqtt.client as mqtt_client
from packaging.version import Version

from smart_meter.log import logger, stats_logger


class MQTTClient(threading.Thread):
    def __init__(
        self,
        mqtt_broker,
        mqtt_stopper,
        mqtt_port=1883,
        mqtt_client_id=None,
        mqtt_qos=1,
        mqtt_protocol=mqtt_client.MQTTv311,
        username="",
        password="",
        worker_threads_stopper=None,
        transport="tcp",
        use_tls=False,
        ws_path=None,
    ):
        """
        Args:
          :param str mqtt_broker: ip or dns
          :param threading.Event() mqtt_stopper: stops the mqtt thread; set last so queued readings are flushed
          :param int mqtt_port:
          :param str mqtt_client_id: random "smartmeter_..." id when None
          :param int mqtt_qos: MQTT QoS 0,1,2 for publish
          :param int mqtt_protocol: MQTT protocol version
          :param str username:
          :param str password:
          :param threading.Event() worker_threads_stopper: set when the mqtt thread fails, to stop the reader
          :param str transport: "tcp" or "websockets"
          :param bool use_tls: Enable TLS/SSL for the connection
          :param str ws_path: WebSocket path (only used when transport="websockets")
        """
        logger.info("mqtt_client_init", paho_version=paho_mqtt.__version__)
        super().__init__(name="mqtt")

        self.__mqtt_broker = mqtt_broker
        self.__mqtt_stopper = mqtt_stopper
        self.__mqtt_port = mqtt_port
        self.__qos = mqtt_qos
        self.__mqtt_protocol = mqtt_protocol
        self.__worker_threads_stopper = worker_threads_stopper or mqtt_stopper

        if mqtt_client_id is None:
            mqtt_client_id = "smartmeter_" + "".join(
                random.choice(string.ascii_lowercase) for _i in range(10)
            )
        self.__mqtt_client_id = mqtt_client_id

        # Demote to v311 if installed paho-mqtt does not support MQTT v5
        if self.__mqtt_protocol == mqtt_client.MQTTv5 and Version(paho_mqtt.__version__) < Version("1.5.1"):
            logger.warning(
                "mqtt_version_downgrade",
                paho_version=paho_mqtt.__version__,
                from_version="MQTTv5",
                to_version="MQTTv311",
            )
            self.__mqtt_protocol = mqtt_client.MQTTv311

        client_args = {
            "callback_api_version": mqtt_client.CallbackAPIVersion.VERSION2,
            "client_id": self.__mqtt_client_id,
            "protocol": self.__mqtt_protocol,
            "transport": transport,
        }
        if self.__mqtt_protocol != mqtt_client.MQTTv5:
            client_args["clean_session"] = True
        self.__mqtt = mqtt_client.Client(**client_args)

        if use_tls:
            self.__mqtt.tls_set(cert_reqs=ssl.CERT_REQUIRED)
            logger.info("mqtt_tls_enabled")

        if transport == "websockets" and ws_path:
            self.__mqtt.ws_set_options(path=ws_path)
            logger.info("mqtt_websocket_configured", path=ws_path)

        logger.info(
            "mqtt_client_configured",
            client_id=self.__mqtt_client_id,
            transport=transport,
            tls=use_tls,
        )

        self.__mqtt.username_pw_set(username or None, password or None)
        self.__mqtt.on_connect = self.__on_connect
        self.__mqtt.on_disconnect = self.__on_disconnect

        # Indicate whether run() has been called
        self.__run = False
        self.__keepalive = 600

        # Force a reconnect when disconnected for longer than this (seconds)
        self.__connection_timeout = 60
        self.__connected_flag = False
        self.__disconnect_start_time = int(time.time())

        self.__mqtt_counter = 0

        self.__status_topic = None
        self.__status_payload = None
        self.__status_retain = False

    @property
    def connected(self):
        return self.__connected_flag

    @property
    def messages_published(self):
        return self.__mqtt_counter

    def __internet_on(self):
        """
          Test if the MQTT broker accepts TCP connections

        Returns:
          bool
        """
        try:
            with socket.create_connection((self.__mqtt_broker, int(self.__mqtt_port)), timeout=10):
                pass
            logger.debug("broker_connectivity_available", broker=self.__mqtt_broker, port=self.__mqtt_port)
            return True
        except OSError as e:
            logger.info(
                "broker_connectivity_unavailable",
                broker=self.__mqtt_broker,
                port=self.__mqtt_port,
                error=str(e),
            )
            return False

    def __set_connected_flag(self, flag=True):
        # Start the disconnect timer on a connected -> disconnected transition
        if not flag and self.__connected_flag:
            self.__disconnect_start_time = int(time.time())
            logger.debug("disconnect_timer_started")
        self.__connected_flag = flag

    def __on_connect(self, _client, _userdata, _connect_flags, reason_code, _properties=None):
        if reason_code.is_failure:
            logger.error("mqtt_connection_failed", reason_code=str(reason_code))
            stats_logger.increment("mqtt_errors")
            self.__set_connected_flag(False)
            return

        logger.info("mqtt_connected", reason_code=str(reason_code))
        self.__set_connected_flag(True)
        self.__publish_status()

    def __on_disconnect(self, _client, _userdata, _disconnect_flags, reason_code, _properties=None):
        if reason_code.is_failure:
            logger.warning("mqtt_unexpected_disconnect", reason_code=str(reason_code))
            stats_logger.increment("mqtt_errors")
        else:
            logger.info("mqtt_expected_disconnect", reason_code=str(reason_code))
        self.__set_connected_flag(False)

    def __publish_status(self):
        if self.__status_topic is not None:
            self.do_publish(self.__status_topic, self.__status_payload, self.__status_retain)

    def set_status(self, topic, payload=None, retain=False):
        """
        Publish a status message and republish it after every reconnect

        :param str topic:
        :param str payload:
        :param bool retain:
        """
        logger.debug("set_status", topic=topic, payload=payload)
        self.__status_topic = topic
        self.__status_payload = payload
        self.__status_retain = retain
        self.__publish_status()

    def will_set(self, topic, payload=None, qos=1, retain=False):
        """
        Set last will/testament; call before start()
        """
        if self.__run:
            logger.warning("will_set_after_run", topic=topic)
        self.__mqtt.will_set(topic, payload, qos, retain)

    def do_publish(self, topic, message, retain=False):
        """
        Publish topic & message to MQTT broker

          :param str topic: MQTT topic
          :param str message: MQTT message
          :param bool retain: retained flag MQTT message
        """
        logger.debug("do_publish", topic=topic)
        try:
            info = self.__mqtt.publish(topic=topic, payload=message, qos=self.__qos, retain=retain)
        except ValueError as e:
            logger.warning("mqtt_publish_error", topic=topic, error=str(e))
            stats_logger.increment("mqtt_errors")
            return

        self.__mqtt_counter += 1
        stats_logger.increment("mqtt_messages_sent")
        if info.rc != mqtt_client.MQTT_ERR_SUCCESS:
            logger.warning("mqtt_publish_failed", rc=info.rc, error=mqtt_client.error_string(info.rc))
            stats_logger.increment("mqtt_errors")

    def publish_json(self, topic, obj, retain=False):
        self.do_publish(topic, json.dumps(obj, separators=(",", ":")), retain)

    def __connect(self):
        self.__mqtt.max_queued_messages_set(0)
        self.__mqtt.reconnect_delay_set(min_delay=1, max_delay=360)

        if self.__mqtt_protocol == mqtt_client.MQTTv5:
            self.__mqtt.connect_async(
                host=self.__mqtt_broker,
                port=self.__mqtt_port,
                keepalive=self.__keepalive,
                clean_start=mqtt_client.MQTT_CLEAN_START_FIRST_ONLY,
            )
        else:
            self.__mqtt.connect_async(host=self.__mqtt_broker, port=self.__mqtt_port, keepalive=self.__keepalive)

    def __stop_all(self):
        self.__mqtt_stopper.set()
        self.__worker_threads_stopper.set()

    def run(self):
        logger.info("mqtt_thread_starting", broker=self.__mqtt_broker)
        self.__run = True

        # Wait for the broker; start with a small delay and grow it by 20%
        delay = 0.1
        while not self.__internet_on():
            if self.__mqtt_stopper.wait(delay):
                return
            delay = delay * 1.2

            # Give up after 60min
            if delay > 3600:
                logger.error("mqtt_connection_timeout")
                self.__stop_all()
                return

        try:
            self.__connect()
        except (OSError, ValueError) as e:
            logger.exception("mqtt_connect_exception", error=str(e))
            self.__stop_all()
            return

        logger.info("mqtt_loop_started")
        self.__mqtt.loop_start()

        while not self.__mqtt_stopper.wait(0.1):
            if self.__connected_flag:
                continue
            disconnect_time = int(time.time()) - self.__disconnect_start_time
            if disconnect_time > self.__connection_timeout:
                try:
                    self.__mqtt.reconnect()
                except OSError as e:
                    logger.warning("mqtt_reconnect_failed", error=str(e))
                    # retry after another connection timeout
                    self.__disconnect_start_time = int(time.time())

        logger.debug("mqtt_client_closing")
        self.__mqtt.loop_stop()
        self.__mqtt.disconnect()
        self.__stop_all()
        logger.info("mqtt_client_stopped", messages_published=self.__mqtt_counter)
