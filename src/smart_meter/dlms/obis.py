"""
OBIS register map decoded from a data-notification body.

Meters push their registers either as a flat structure
(obis, value, [scaler/unit], obis, value, ...) or as a structure of
per-register structures. Both are handled by flattening the body in order
and pairing each 6 byte octet string with the value that follows it.
"""

import re
from dataclasses import dataclass
from typing import Any, NamedTuple

from smart_meter.dlms.apdu import DataNotification
from smart_meter.dlms.axdr import Data, DataType, parse_data
from smart_meter.dlms.errors import DecodeError

OBIS_CODE_LENGTH = 6

_OBIS_PATTERN = re.compile(r"^(\d+)-(\d+):(\d+)\.(\d+)\.(\d+)(?:[.*](\d+))?$")


class ObisCode(NamedTuple):
    a: int
    b: int
    c: int
    d: int
    e: int
    f: int = 255

    def __str__(self) -> str:
        text = f"{self.a}-{self.b}:{self.c}.{self.d}.{self.e}"
        if self.f != 255:
            text += f"*{self.f}"
        return text

    @classmethod
    def parse(cls, text: str) -> "ObisCode":
        """Parse ``A-B:C.D.E`` with an optional ``*F`` or ``.F`` suffix."""
        match = _OBIS_PATTERN.match(text.strip())
        if match is None:
            raise ValueError(f"invalid OBIS code: {text!r}")
        groups = [int(g) for g in match.groups() if g is not None]
        if any(g > 255 for g in groups):
            raise ValueError(f"invalid OBIS code: {text!r}")
        return cls(*groups)


@dataclass(frozen=True)
class Register:
    """A register value with its raw scaler and unit code."""

    value: Any
    scaler: int = 0
    unit: int | None = None

    @property
    def scaled_value(self) -> Any:
        if isinstance(self.value, bool) or not isinstance(self.value, (int, float)):
            return self.value
        if self.scaler > 0:
            return self.value * 10**self.scaler
        if self.scaler < 0:
            return self.value / 10**-self.scaler
        return self.value


def _is_scaler_unit(data: Data) -> bool:
    return (
        data.type == DataType.STRUCTURE
        and len(data.value) == 2
        and data.value[0].type == DataType.INTEGER
        and data.value[1].type == DataType.ENUM
    )


def _leaves(data: Data):
    if data.type in (DataType.STRUCTURE, DataType.ARRAY) and not _is_scaler_unit(data):
        for item in data.value:
            yield from _leaves(item)
    else:
        yield data


def _plain(data: Data) -> Any:
    if data.type in (DataType.STRUCTURE, DataType.ARRAY):
        return [_plain(item) for item in data.value]
    return data.value


class ObisMap(dict):
    """Registers of one reading, keyed by ``ObisCode``."""

    @classmethod
    def parse(cls, notification: DataNotification) -> "ObisMap":
        """Decode the registers of a data-notification.

        Raises:
            DecodeError: the body is not valid A-XDR or holds no OBIS registers.
        """
        leaves = list(_leaves(parse_data(notification.body)))

        registers = cls()
        i = 0
        while i < len(leaves):
            leaf = leaves[i]
            i += 1
            if leaf.type != DataType.OCTET_STRING or len(leaf.value) != OBIS_CODE_LENGTH:
                continue
            if i >= len(leaves):
                break

            code = ObisCode(*leaf.value)
            value = leaves[i]
            i += 1
            scaler, unit = 0, None
            if i < len(leaves) and _is_scaler_unit(leaves[i]):
                scaler, unit = leaves[i].value[0].value, leaves[i].value[1].value
                i += 1
            registers[code] = Register(_plain(value), scaler, unit)

        if not registers:
            raise DecodeError("no OBIS registers in notification body")
        return registers

    def get_register(self, code: "ObisCode | str") -> Register | None:
        if isinstance(code, str):
            code = ObisCode.parse(code)
        return self.get(code)
