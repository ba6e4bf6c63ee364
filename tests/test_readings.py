import io

import pytest

from helpers import BODY, KEY, ChunkedSource, ciphered, hdlc_frames, mbus_telegrams
from smart_meter import ObisIterator, ReadError, open_readings
from smart_meter.dlms import DataNotification, Dlms, ObisCode

ENERGY = ObisCode(1, 0, 1, 8, 0)


def _stream(*bodies):
    return b"".join(
        b"".join(mbus_telegrams(ciphered(invoke_id=i, body=body))) for i, body in enumerate(bodies, 1)
    )


def test_open_readings():
    readings = open_readings(io.BytesIO(_stream(BODY)), Dlms(KEY))

    registers = next(readings)

    assert registers[ENERGY].value == 12345
    with pytest.raises(ReadError):
        next(readings)


def test_undecodable_body_is_skipped():
    readings = open_readings(io.BytesIO(_stream(b"\x13\x00", BODY)), Dlms(KEY))

    assert ENERGY in next(readings)


def test_ends_with_message_iterator():
    messages = [DataNotification(1, None, BODY), DataNotification(2, None, b"")]

    readings = list(ObisIterator(messages))

    assert len(readings) == 1


def test_read_error_is_passed_through_and_resumable():
    data = _stream(BODY)

    class FailOnce(ChunkedSource):
        failed = False

        def read(self, n):
            if not self.failed:
                self.failed = True
                raise OSError("port gone")
            return super().read(n)

    readings = open_readings(FailOnce(data), Dlms(KEY))

    with pytest.raises(ReadError):
        next(readings)
    assert next(readings)[ENERGY].scaled_value == 12345


def test_hdlc_link():
    readings = open_readings(io.BytesIO(b"".join(hdlc_frames(ciphered()))), Dlms(KEY), link="hdlc")

    assert next(readings)[ENERGY].unit == 30


def test_deeply_nested_body_is_skipped():
    nested = b"\x02\x01" * 1000 + b"\x00"
    stream = b"".join(hdlc_frames(ciphered(invoke_id=1, body=nested), segment_size=200))
    stream += b"".join(hdlc_frames(ciphered(invoke_id=2)))

    readings = open_readings(io.BytesIO(stream), Dlms(KEY), link="hdlc")

    assert next(readings)[ENERGY].value == 12345
