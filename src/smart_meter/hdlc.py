"""HDLC frame grammar (IEC 62056-46, frame format type 3).

Frame layout::

    +------+--------+-------------+---------+---------+-----+-------------+-----+------+
    | Flag | Format | Destination | Source  | Control | HCS | Information | FCS | Flag |
    | 7E   | 2 B    | 1, 2 or 4 B | 1,2,4 B | 1 B     | 2 B | variable    | 2 B | 7E   |
    +------+--------+-------------+---------+---------+-----+-------------+-----+------+

- Format: type nibble 0xA, segmentation bit 0x0800, 11-bit frame length
  counting everything between the flags
- Addresses: the last byte of an address has its least significant bit set
- HCS and FCS: CRC-16/X.25, little-endian; HCS is only present with an
  information field
"""

from dataclasses import dataclass

FLAG = 0x7E
FORMAT_TYPE_3 = 0xA
SEGMENTATION_BIT = 0x08
MIN_FRAME_LENGTH = 7  # format(2) + destination(1) + source(1) + control(1) + fcs(2)
MAX_FRAME_LENGTH = 0x7FF


def _make_table() -> list[int]:
    table = []
    for i in range(256):
        crc = i
        for _ in range(8):
            crc = (crc >> 1) ^ 0x8408 if crc & 1 else crc >> 1
        table.append(crc)
    return table


_CRC_TABLE = _make_table()


def crc16(data) -> int:
    """CRC-16/X.25 as used for the HDLC header and frame check sequences."""
    crc = 0xFFFF
    for byte in data:
        crc = (crc >> 8) ^ _CRC_TABLE[(crc ^ byte) & 0xFF]
    return crc ^ 0xFFFF


class FrameError(Exception):
    """Base class for HDLC grammar errors."""


class Incomplete(FrameError):
    def __init__(self, needed=None):
        super().__init__(needed)
        self.needed = needed


class InvalidStartCharacter(FrameError):
    pass


class InvalidFormat(FrameError):
    pass


class InvalidAddress(FrameError):
    pass


class InvalidChecksum(FrameError):
    pass


@dataclass(frozen=True)
class HdlcFrame:
    """A parsed frame; ``information`` is a view into the parsed input."""

    segmented: bool
    destination: int
    source: int
    control: int
    information: memoryview | bytes = b""

    def __repr__(self) -> str:
        return (
            f"HdlcFrame(segmented={self.segmented}, dst={self.destination}, "
            f"src={self.source}, control=0x{self.control:02X}, {len(self.information)} bytes)"
        )


def _parse_address(frame, pos: int, end: int) -> tuple[int, int]:
    value = 0
    for size in range(1, 5):
        if pos + size > end:
            raise InvalidAddress("address runs past the frame")
        byte = frame[pos + size - 1]
        value = (value << 7) | (byte >> 1)
        if byte & 0x01:
            if size == 3:
                raise InvalidAddress("3-byte address")
            return value, pos + size
    raise InvalidAddress("address longer than 4 bytes")


def parse_frame(data) -> tuple[HdlcFrame, memoryview]:
    """Parse one frame from the front of ``data``.

    Returns:
        ``(frame, remainder)`` where remainder is the unconsumed input.

    Raises:
        Incomplete, InvalidStartCharacter, InvalidFormat, InvalidAddress, InvalidChecksum
    """
    view = memoryview(data)
    if len(view) == 0:
        raise Incomplete(None)
    if view[0] != FLAG:
        raise InvalidStartCharacter(view[0])
    if len(view) < 3:
        raise Incomplete(3 - len(view))
    if view[1] >> 4 != FORMAT_TYPE_3:
        raise InvalidFormat("not a type 3 frame")

    length = ((view[1] & 0x07) << 8) | view[2]
    if length < MIN_FRAME_LENGTH:
        raise InvalidFormat("frame too short")
    total = length + 2
    if len(view) < total:
        raise Incomplete(total - len(view))
    if view[total - 1] != FLAG:
        raise InvalidFormat("missing closing flag")

    frame = view[1 : total - 1]
    fcs_pos = len(frame) - 2

    destination, pos = _parse_address(frame, 2, fcs_pos)
    source, pos = _parse_address(frame, pos, fcs_pos)
    if pos >= fcs_pos:
        raise InvalidFormat("missing control field")
    control = frame[pos]
    pos += 1

    information = frame[fcs_pos:fcs_pos]
    if pos < fcs_pos:
        if fcs_pos - pos < 2:
            raise InvalidFormat("truncated header check sequence")
        hcs = frame[pos] | (frame[pos + 1] << 8)
        if crc16(frame[:pos]) != hcs:
            raise InvalidChecksum("header check sequence")
        information = frame[pos + 2 : fcs_pos]

    fcs = frame[fcs_pos] | (frame[fcs_pos + 1] << 8)
    if crc16(frame[:fcs_pos]) != fcs:
        raise InvalidChecksum("frame check sequence")

    parsed = HdlcFrame(
        segmented=bool(view[1] & SEGMENTATION_BIT),
        destination=destination,
        source=source,
        control=control,
        information=information,
    )
    return parsed, view[total:]


def build_frame(
    information: bytes,
    segmented: bool = False,
    destination: bytes = b"\x41",
    source: bytes = b"\x03",
    control: int = 0x13,
) -> bytes:
    """Build a type 3 frame; addresses are given in their encoded form."""
    header_size = 2 + len(destination) + len(source) + 1
    length = header_size + 2
    if information:
        length += 2 + len(information)
    if length > MAX_FRAME_LENGTH:
        raise ValueError("information field too long for a single frame")

    format_field = (FORMAT_TYPE_3 << 12) | length
    if segmented:
        format_field |= SEGMENTATION_BIT << 8

    frame = bytearray(format_field.to_bytes(2, "big"))
    frame += destination + source + bytes([control])
    if information:
        frame += crc16(frame).to_bytes(2, "little")
        frame += information
    frame += crc16(frame).to_bytes(2, "little")
    return bytes([FLAG]) + bytes(frame) + bytes([FLAG])
