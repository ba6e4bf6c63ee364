"""
A-XDR decoding of COSEM ``Data`` values.

Every value starts with a one byte type tag. Strings, arrays and structures
carry a variable length prefix: lengths below 0x80 are a single byte,
otherwise the low bits of the first byte give the number of length bytes
that follow (0x81 nn, 0x82 nn nn, ...).
"""

import struct
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from enum import IntEnum
from typing import Any

from smart_meter.dlms.errors import DecodeError, TruncatedData


class DataType(IntEnum):
    NULL_DATA = 0x00
    ARRAY = 0x01
    STRUCTURE = 0x02
    BOOLEAN = 0x03
    BIT_STRING = 0x04
    DOUBLE_LONG = 0x05
    DOUBLE_LONG_UNSIGNED = 0x06
    OCTET_STRING = 0x09
    VISIBLE_STRING = 0x0A
    UTF8_STRING = 0x0C
    BCD = 0x0D
    INTEGER = 0x0F
    LONG = 0x10
    UNSIGNED = 0x11
    LONG_UNSIGNED = 0x12
    LONG64 = 0x14
    LONG64_UNSIGNED = 0x15
    ENUM = 0x16
    FLOAT32 = 0x17
    FLOAT64 = 0x18
    DATE_TIME = 0x19
    DATE = 0x1A
    TIME = 0x1B


_FIXED_FORMATS: dict[DataType, str] = {
    DataType.BOOLEAN: ">?",
    DataType.DOUBLE_LONG: ">i",
    DataType.DOUBLE_LONG_UNSIGNED: ">I",
    DataType.BCD: ">b",
    DataType.INTEGER: ">b",
    DataType.LONG: ">h",
    DataType.UNSIGNED: ">B",
    DataType.LONG_UNSIGNED: ">H",
    DataType.LONG64: ">q",
    DataType.LONG64_UNSIGNED: ">Q",
    DataType.ENUM: ">B",
    DataType.FLOAT32: ">f",
    DataType.FLOAT64: ">d",
}

DATE_TIME_SIZE = 12
DATE_SIZE = 5
TIME_SIZE = 4

# Arrays and structures in meter pushes nest a few levels at most
MAX_NESTING = 32


@dataclass(frozen=True)
class Data:
    type: DataType
    value: Any


def _take(data, pos: int, size: int) -> tuple[bytes, int]:
    end = pos + size
    if end > len(data):
        raise TruncatedData(f"need {end - len(data)} more bytes at offset {pos}")
    return bytes(data[pos:end]), end


def decode_length(data, pos: int) -> tuple[int, int]:
    """Decode a variable length prefix at ``pos``; returns ``(length, next_pos)``."""
    if pos >= len(data):
        raise TruncatedData("missing length")
    first = data[pos]
    if first < 0x80:
        return first, pos + 1
    size = first & 0x7F
    if size == 0 or size > 4:
        raise DecodeError(f"invalid length prefix 0x{first:02X}")
    raw, pos = _take(data, pos + 1, size)
    return int.from_bytes(raw, "big"), pos


def encode_length(length: int) -> bytes:
    if length < 0x80:
        return bytes([length])
    size = (length.bit_length() + 7) // 8
    return bytes([0x80 | size]) + length.to_bytes(size, "big")


def decode_date_time(raw) -> datetime | bytes:
    """Convert a 12 byte COSEM date-time; unspecified fields leave the raw bytes."""
    raw = bytes(raw)
    year = int.from_bytes(raw[0:2], "big")
    month, day = raw[2], raw[3]
    hour, minute, second, hundredths = raw[5], raw[6], raw[7], raw[8]
    deviation = int.from_bytes(raw[9:11], "big", signed=True)

    if year == 0xFFFF or month > 12 or day > 31 or hour > 23 or minute > 59 or second > 59:
        return raw

    microsecond = hundredths * 10000 if hundredths < 100 else 0
    # deviation is minutes from local time to UTC
    tzinfo = None if deviation == -0x8000 else timezone(timedelta(minutes=-deviation))
    try:
        return datetime(year, month, day, hour, minute, second, microsecond, tzinfo=tzinfo)
    except ValueError:
        return raw


def decode_date(raw) -> date | bytes:
    raw = bytes(raw)
    year = int.from_bytes(raw[0:2], "big")
    try:
        return date(year, raw[2], raw[3])
    except ValueError:
        return raw


def decode_time(raw) -> time | bytes:
    raw = bytes(raw)
    hour, minute, second, hundredths = raw
    try:
        return time(hour, minute, second, hundredths * 10000 if hundredths < 100 else 0)
    except ValueError:
        return raw


def decode_data(data, pos: int = 0, depth: int = 0) -> tuple[Data, int]:
    """Decode one value starting at ``pos``; returns ``(value, next_pos)``."""
    if depth > MAX_NESTING:
        raise DecodeError(f"values nested deeper than {MAX_NESTING} levels")
    if pos >= len(data):
        raise TruncatedData("missing type tag")
    tag = data[pos]
    try:
        data_type = DataType(tag)
    except ValueError:
        raise DecodeError(f"unsupported data type 0x{tag:02X}") from None
    pos += 1

    if data_type == DataType.NULL_DATA:
        return Data(data_type, None), pos

    if data_type in (DataType.ARRAY, DataType.STRUCTURE):
        count, pos = decode_length(data, pos)
        items = []
        for _ in range(count):
            item, pos = decode_data(data, pos, depth + 1)
            items.append(item)
        return Data(data_type, items), pos

    if data_type in _FIXED_FORMATS:
        fmt = _FIXED_FORMATS[data_type]
        raw, pos = _take(data, pos, struct.calcsize(fmt))
        return Data(data_type, struct.unpack(fmt, raw)[0]), pos

    if data_type == DataType.BIT_STRING:
        bits, pos = decode_length(data, pos)
        raw, pos = _take(data, pos, (bits + 7) // 8)
        return Data(data_type, raw), pos

    if data_type in (DataType.OCTET_STRING, DataType.VISIBLE_STRING, DataType.UTF8_STRING):
        length, pos = decode_length(data, pos)
        raw, pos = _take(data, pos, length)
        if data_type == DataType.OCTET_STRING:
            return Data(data_type, raw), pos
        encoding = "ascii" if data_type == DataType.VISIBLE_STRING else "utf-8"
        try:
            return Data(data_type, raw.decode(encoding)), pos
        except UnicodeDecodeError as e:
            raise DecodeError(f"invalid {data_type.name.lower()}") from e

    if data_type == DataType.DATE_TIME:
        raw, pos = _take(data, pos, DATE_TIME_SIZE)
        return Data(data_type, decode_date_time(raw)), pos
    if data_type == DataType.DATE:
        raw, pos = _take(data, pos, DATE_SIZE)
        return Data(data_type, decode_date(raw)), pos

    raw, pos = _take(data, pos, TIME_SIZE)
    return Data(data_type, decode_time(raw)), pos


def parse_data(data) -> Data:
    """Decode the single value at the start of ``data``; trailing bytes are ignored."""
    value, _ = decode_data(data, 0)
    return value
