"""M-Bus telegram grammar (EN 13757-2, wired link layer).

Telegram layouts::

    E5                                   single character (ACK)
    10 C A CS 16                         short frame
    68 L L 68 C A CI [user data] CS 16   control frame (L == 3) / long frame

- L counts the bytes from C up to and including the last user data byte
- CS is the 8-bit sum of the same bytes
"""

from dataclasses import dataclass
from enum import Enum

SINGLE_CHARACTER = 0xE5
START_SHORT = 0x10
START_LONG = 0x68
STOP = 0x16

SHORT_FRAME_SIZE = 5
LONG_HEADER_SIZE = 4


class TelegramError(Exception):
    """Base class for telegram grammar errors."""


class Incomplete(TelegramError):
    def __init__(self, needed=None):
        super().__init__(needed)
        self.needed = needed


class InvalidStartCharacter(TelegramError):
    pass


class InvalidFormat(TelegramError):
    pass


class ChecksumMismatch(TelegramError):
    pass


class TelegramType(Enum):
    SINGLE_CHARACTER = "single_character"
    SHORT_FRAME = "short_frame"
    CONTROL_FRAME = "control_frame"
    LONG_FRAME = "long_frame"


@dataclass(frozen=True)
class Telegram:
    """A parsed telegram; ``user_data`` is a view into the parsed input."""

    type: TelegramType
    control: int | None = None
    address: int | None = None
    control_information: int | None = None
    user_data: memoryview | bytes = b""

    def __repr__(self) -> str:
        return (
            f"Telegram({self.type.value}, C={self.control}, A={self.address}, "
            f"CI={self.control_information}, {len(self.user_data)} bytes)"
        )


def checksum(data) -> int:
    return sum(data) & 0xFF


def parse_telegram(data) -> tuple[Telegram, memoryview]:
    """Parse one telegram from the front of ``data``.

    Args:
        data: bytes-like input, typically a ``memoryview`` of a read buffer.

    Returns:
        ``(telegram, remainder)`` where remainder is the unconsumed input.

    Raises:
        Incomplete: ``needed`` holds the number of missing bytes, if known.
        InvalidStartCharacter: the first byte cannot start a telegram.
        InvalidFormat: length fields, second start byte or stop byte are wrong.
        ChecksumMismatch: the telegram is structurally complete but corrupt.
    """
    view = memoryview(data)
    if len(view) == 0:
        raise Incomplete(None)

    start = view[0]
    if start == SINGLE_CHARACTER:
        return Telegram(TelegramType.SINGLE_CHARACTER), view[1:]

    if start == START_SHORT:
        if len(view) < SHORT_FRAME_SIZE:
            raise Incomplete(SHORT_FRAME_SIZE - len(view))
        if view[4] != STOP:
            raise InvalidFormat("missing stop character")
        if checksum(view[1:3]) != view[3]:
            raise ChecksumMismatch()
        telegram = Telegram(TelegramType.SHORT_FRAME, control=view[1], address=view[2])
        return telegram, view[SHORT_FRAME_SIZE:]

    if start != START_LONG:
        raise InvalidStartCharacter(start)

    if len(view) < LONG_HEADER_SIZE:
        raise Incomplete(LONG_HEADER_SIZE - len(view))

    length = view[1]
    if view[2] != length or view[3] != START_LONG or length < 3:
        raise InvalidFormat("invalid long frame header")

    total = length + 6
    if len(view) < total:
        raise Incomplete(total - len(view))

    body = view[LONG_HEADER_SIZE : LONG_HEADER_SIZE + length]
    if view[total - 1] != STOP:
        raise InvalidFormat("missing stop character")
    if checksum(body) != view[total - 2]:
        raise ChecksumMismatch()

    telegram_type = TelegramType.CONTROL_FRAME if length == 3 else TelegramType.LONG_FRAME
    telegram = Telegram(
        telegram_type,
        control=body[0],
        address=body[1],
        control_information=body[2],
        user_data=body[3:],
    )
    return telegram, view[total:]


def build_long_frame(control: int, address: int, control_information: int, user_data: bytes) -> bytes:
    """Build a long frame telegram around ``user_data``."""
    body = bytes([control, address, control_information]) + bytes(user_data)
    if len(body) > 0xFF:
        raise ValueError("user data too long for a single telegram")
    length = len(body)
    return bytes([START_LONG, length, length, START_LONG]) + body + bytes([checksum(body), STOP])
