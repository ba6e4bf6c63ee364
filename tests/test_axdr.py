from datetime import date, datetime, time, timedelta, timezone

import pytest

from smart_meter.dlms import DataType, decode_data, parse_data
from smart_meter.dlms.axdr import decode_date_time, decode_length, encode_length
from smart_meter.dlms.errors import DecodeError, TruncatedData


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("0601020304", (DataType.DOUBLE_LONG_UNSIGNED, 0x01020304)),
        ("05FFFFFFFE", (DataType.DOUBLE_LONG, -2)),
        ("1280 00", (DataType.LONG_UNSIGNED, 0x8000)),
        ("10FF38", (DataType.LONG, -200)),
        ("0FFD", (DataType.INTEGER, -3)),
        ("1621", (DataType.ENUM, 33)),
        ("0301", (DataType.BOOLEAN, True)),
        ("15 0000000100000000", (DataType.LONG64_UNSIGNED, 1 << 32)),
        ("17 3FC00000", (DataType.FLOAT32, 1.5)),
        ("00", (DataType.NULL_DATA, None)),
    ],
)
def test_fixed_size_values(raw, expected):
    data = parse_data(bytes.fromhex(raw))

    assert (data.type, data.value) == expected


def test_strings():
    assert parse_data(b"\x09\x03abc").value == b"abc"
    assert parse_data(b"\x0a\x05hello").value == "hello"
    assert parse_data(b"\x0c\x02\xc3\xa9").value == "é"


def test_invalid_visible_string():
    with pytest.raises(DecodeError):
        parse_data(b"\x0a\x01\xff")


def test_structure_and_array():
    data, pos = decode_data(bytes.fromhex("0202 1101 0102 1102 1103 FF"))

    assert data.type == DataType.STRUCTURE
    assert data.value[0].value == 1
    assert [item.value for item in data.value[1].value] == [2, 3]
    assert pos == 10


def test_decode_at_offset():
    data, pos = decode_data(b"\xff\xff\x11\x07", 2)

    assert data.value == 7
    assert pos == 4


@pytest.mark.parametrize("length", [0, 0x7F, 0x80, 0xFF, 0x100, 0x12345])
def test_length_prefix(length):
    encoded = encode_length(length)

    assert decode_length(encoded + b"\x00", 0) == (length, len(encoded))


def test_length_prefix_errors():
    with pytest.raises(TruncatedData):
        decode_length(b"\x82\x01", 0)
    with pytest.raises(DecodeError):
        decode_length(b"\x80", 0)


@pytest.mark.parametrize("raw", ["", "06 0102", "09 05 0102", "02 02 11 01", "13"])
def test_truncated_or_unknown(raw):
    with pytest.raises(DecodeError):
        parse_data(bytes.fromhex(raw))


def test_date_time():
    # 2024-03-31 02:30:15.50, deviation -60 (UTC+1), daylight saving active
    raw = bytes.fromhex("07E8 03 1F 07 02 1E 0F 32 FFC4 80")
    value = decode_date_time(raw)

    assert value == datetime(2024, 3, 31, 2, 30, 15, 500000, tzinfo=timezone(timedelta(hours=1)))


def test_date_time_without_deviation():
    raw = bytes.fromhex("07E8 0101 01 000000 FF 8000 00")

    assert decode_date_time(raw) == datetime(2024, 1, 1, 0, 0, 0)


def test_date_time_unspecified_fields_keep_raw_bytes():
    raw = bytes.fromhex("FFFF FFFF FF FFFFFF FF 8000 FF")

    assert decode_date_time(raw) == raw


def test_date_and_time_values():
    assert parse_data(bytes.fromhex("1A 07E8 0C 18 02")).value == date(2024, 12, 24)
    assert parse_data(bytes.fromhex("1B 17 3B 00 FF")).value == time(23, 59, 0)
    assert parse_data(bytes.fromhex("19 07E8 0C 18 02 17 3B 00 00 0000 00")).type == DataType.DATE_TIME


def test_nesting_limit():
    assert parse_data(b"\x02\x01" * 32 + b"\x00").type == DataType.STRUCTURE

    with pytest.raises(DecodeError):
        parse_data(b"\x02\x01" * 33 + b"\x00")
    with pytest.raises(DecodeError):
        parse_data(b"\x01\x01" * 1000 + b"\x00")
