"""
Read the meter and publish its readings to MQTT.

TaskReadMeter owns the byte source and the reader. Every decoded reading
is published as one JSON document per register (<prefix>/<obis code>) and
one document with all registers (<prefix>/reading), at most MQTT_MAXRATE
times per hour.


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

import threading
import time
from datetime import date, datetime, time as dt_time

from smart_meter.dlms import Dlms, ObisMap, Register
from smart_meter.errors import DecryptionFailed, ReadError
from smart_meter.log import logger
from smart_meter.readings import open_readings


def json_value(value):
    """Convert a decoded register value to something json.dumps accepts."""
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, (list, tuple)):
        return [json_value(item) for item in value]
    return value


def register_document(register: Register) -> dict:
    return {
        "value": json_value(register.scaled_value),
        "raw": json_value(register.value),
        "scaler": register.scaler,
        "unit": register.unit,
    }


def reading_document(registers: ObisMap) -> dict:
    return {str(code): register_document(register) for code, register in registers.items()}


class TaskReadMeter(threading.Thread):
    def __init__(self, stopper, mqtt, stream, dlms: Dlms, link="mbus", topic_prefix="smartmeter", maxrate=3600):
        """

        Args:
          :param threading.Event() stopper: stops thread; set by this thread when the stream ends
          :param MQTTClient mqtt: publisher
          :param stream: opened byte source (see transport.open_stream)
          :param Dlms dlms: key material
          :param str link: "mbus" or "hdlc"
          :param str topic_prefix: MQTT topic prefix
          :param int maxrate: max number of readings published per hour
        """
        super().__init__(name="meter")
        self.__stopper = stopper
        self.__mqtt = mqtt
        self.__stream = stream
        self.__readings = open_readings(stream, dlms, link)
        self.__topic_prefix = topic_prefix
        self.__interval = 3600.0 / max(1, min(maxrate, 3600))
        self.__last_publish = None
        self.__counter = 0

    @property
    def readings_published(self):
        return self.__counter

    def stop(self):
        """Stop reading; closing the stream unblocks a pending read."""
        self.__stopper.set()
        self.__stream.close()

    def publish(self, registers: ObisMap):
        now = time.monotonic()
        if self.__last_publish is not None and now - self.__last_publish < self.__interval:
            logger.debug("reading_rate_limited", registers=len(registers))
            return False

        self.__last_publish = now
        document = reading_document(registers)
        for code, register in document.items():
            self.__mqtt.publish_json(f"{self.__topic_prefix}/{code}", register)
        self.__mqtt.publish_json(f"{self.__topic_prefix}/reading", document)
        self.__counter += 1
        logger.debug("reading_published", registers=len(document), count=self.__counter)
        return True

    def __read_meter(self):
        while not self.__stopper.is_set():
            try:
                registers = next(self.__readings)
            except StopIteration:
                logger.warning("meter_readings_ended")
                return
            except DecryptionFailed as e:
                logger.error("meter_key_rejected", error=str(e))
                return
            except ReadError as e:
                if not self.__stopper.is_set():
                    logger.error("meter_stream_failed", error=str(e))
                return

            self.publish(registers)

    def run(self):
        logger.debug("meter_thread_started")
        try:
            self.__read_meter()
        finally:
            self.__stream.close()
            self.__stopper.set()
        logger.debug("meter_thread_stopped", readings_published=self.__counter)
