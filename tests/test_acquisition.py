import io
import json
import threading
from datetime import datetime, timezone

from helpers import AUTH_KEY, KEY, OTHER_KEY, ciphered, mbus_telegrams
from smart_meter.acquisition import TaskReadMeter, json_value, reading_document
from smart_meter.dlms import Dlms, ObisCode, ObisMap, Register


class FakeMQTT:
    def __init__(self):
        self.published = []

    def publish_json(self, topic, document, retain=False):
        # documents must survive json serialisation like the real client does
        json.dumps(document)
        self.published.append((topic, document))


def _registers():
    registers = ObisMap()
    registers[ObisCode(1, 0, 1, 8, 0)] = Register(12345, -3, 30)
    registers[ObisCode(0, 0, 96, 1, 0)] = Register(b"\x12\xab")
    return registers


def _task(data=b"", maxrate=3600, dlms=None):
    stopper = threading.Event()
    mqtt = FakeMQTT()
    task = TaskReadMeter(stopper, mqtt, io.BytesIO(data), dlms or Dlms(KEY), maxrate=maxrate)
    return task, mqtt, stopper


def test_json_value():
    stamp = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    assert json_value(b"\x01\xff") == "01ff"
    assert json_value(stamp) == "2024-01-01T12:00:00+00:00"
    assert json_value([b"\x00", 1]) == ["00", 1]
    assert json_value(1.5) == 1.5


def test_reading_document():
    document = reading_document(_registers())

    assert document["1-0:1.8.0"] == {"value": 12.345, "raw": 12345, "scaler": -3, "unit": 30}
    assert document["0-0:96.1.0"]["value"] == "12ab"


def test_publish_topics():
    task, mqtt, _ = _task()

    assert task.publish(_registers())

    topics = [topic for topic, _ in mqtt.published]
    assert topics == ["smartmeter/1-0:1.8.0", "smartmeter/0-0:96.1.0", "smartmeter/reading"]
    assert task.readings_published == 1


def test_publish_is_rate_limited():
    task, mqtt, _ = _task(maxrate=1)

    assert task.publish(_registers())
    assert not task.publish(_registers())
    assert len(mqtt.published) == 3


def test_run_until_end_of_stream():
    data = b"".join(telegram for i in (1, 2) for telegram in mbus_telegrams(ciphered(invoke_id=i)))
    task, mqtt, stopper = _task(data)

    task.start()
    task.join(timeout=5)

    assert not task.is_alive()
    assert stopper.is_set()
    assert task.readings_published == 1
    assert mqtt.published[-1][0] == "smartmeter/reading"


def test_run_stops_on_rejected_key():
    data = b"".join(mbus_telegrams(ciphered(security_control=0x30, auth_key=AUTH_KEY)))
    task, mqtt, stopper = _task(data, dlms=Dlms(OTHER_KEY, AUTH_KEY))

    task.run()

    assert stopper.is_set()
    assert mqtt.published == []
