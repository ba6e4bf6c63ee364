"""DLMS data-notification APDU, the message pushed by the meter every interval."""

from dataclasses import dataclass
from datetime import datetime

from smart_meter.dlms.axdr import DATE_TIME_SIZE, decode_date_time
from smart_meter.dlms.errors import DecryptionFailed, InvalidFormat

DATA_NOTIFICATION = 0x0F
HEADER_SIZE = 6  # tag(1) + long-invoke-id-and-priority(4) + date-time length(1)


@dataclass(frozen=True)
class DataNotification:
    """A decrypted data-notification; ``body`` holds the undecoded A-XDR notification body."""

    invoke_id: int
    timestamp: datetime | bytes | None
    body: bytes

    @classmethod
    def parse(cls, plaintext: bytes) -> "DataNotification":
        """Parse a decrypted APDU.

        Raises:
            DecryptionFailed: the plaintext is not a data-notification, which for
                an unauthenticated suite is the only sign of a wrong key.
            InvalidFormat: the header is truncated or malformed.
        """
        if not plaintext or plaintext[0] != DATA_NOTIFICATION:
            raise DecryptionFailed("plaintext is not a data-notification")
        if len(plaintext) < HEADER_SIZE:
            raise InvalidFormat("truncated data-notification header")

        invoke_id = int.from_bytes(plaintext[1:5], "big")
        timestamp_length = plaintext[5]
        pos = HEADER_SIZE
        if timestamp_length == 0:
            timestamp = None
        elif timestamp_length == DATE_TIME_SIZE and len(plaintext) >= pos + DATE_TIME_SIZE:
            timestamp = decode_date_time(plaintext[pos : pos + DATE_TIME_SIZE])
            pos += DATE_TIME_SIZE
        else:
            raise InvalidFormat("invalid data-notification date-time")

        return cls(invoke_id=invoke_id, timestamp=timestamp, body=bytes(plaintext[pos:]))


def encode_data_notification(invoke_id: int, body: bytes, date_time: bytes | None = None) -> bytes:
    """Encode a data-notification APDU; ``date_time`` is the raw 12 byte COSEM value."""
    apdu = bytes([DATA_NOTIFICATION]) + invoke_id.to_bytes(4, "big")
    if date_time is None:
        return apdu + b"\x00" + body
    if len(date_time) != DATE_TIME_SIZE:
        raise ValueError("date-time must be 12 bytes")
    return apdu + bytes([DATE_TIME_SIZE]) + date_time + body
