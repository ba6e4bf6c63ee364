"""
Link layers the reader can be driven by.

A link layer knows how to cut one frame from the front of a byte buffer and
how to turn an ordered set of frames into one decrypted data-notification.
Two variants exist: M-Bus telegrams and HDLC frames. Both translate the
errors of their grammar and of the DLMS layer into the exceptions of
smart_meter.errors, which is all the reader ever sees.
"""

from collections.abc import Sequence
from typing import Any, Protocol

from smart_meter import hdlc, mbus
from smart_meter.dlms import Dlms, DataNotification
from smart_meter.dlms import errors as dlms_errors
from smart_meter.errors import DecryptionFailed, Incomplete, Malformed, SoftFailure

# M-Bus CI field for DLMS transport: low nibble is the segment sequence number
MBUS_CI_MAX = 0x1F
MBUS_CI_LAST_SEGMENT = 0x10
MBUS_CI_SEQUENCE_MASK = 0x0F
MBUS_TRANSPORT_HEADER_SIZE = 2  # STSAP + DTSAP

HDLC_LLC_HEADERS = (b"\xe6\xe7\x00", b"\xe6\xe6\x00")


class DataLinkLayer(Protocol):
    name: str

    def parse_frame(self, data) -> tuple[Any, memoryview]:
        """Cut one frame from the front of ``data``; raise Incomplete or Malformed."""
        ...

    def decrypt(self, frames: Sequence[Any]) -> DataNotification:
        """Decrypt a frame set; raise Incomplete, SoftFailure or DecryptionFailed."""
        ...


def _decrypt_final(dlms: Dlms, payload: bytes) -> DataNotification:
    """Decrypt a payload whose last segment has been seen."""
    try:
        return dlms.decrypt_apdu(payload)
    except dlms_errors.Incomplete as e:
        raise SoftFailure("last segment received but ciphered APDU is incomplete") from e
    except dlms_errors.InvalidFormat as e:
        raise SoftFailure(str(e)) from e
    except dlms_errors.DecryptionFailed as e:
        raise DecryptionFailed(str(e)) from e


class MBusDataLinkLayer:
    name = "mbus"

    def __init__(self, dlms: Dlms):
        self.dlms = dlms

    def __repr__(self) -> str:
        return f"MBusDataLinkLayer({self.dlms!r})"

    def parse_frame(self, data) -> tuple[mbus.Telegram, memoryview]:
        try:
            return mbus.parse_telegram(data)
        except mbus.Incomplete as e:
            raise Incomplete(e.needed) from None
        except mbus.TelegramError as e:
            raise Malformed(type(e).__name__) from e

    def decrypt(self, frames: Sequence[mbus.Telegram]) -> DataNotification:
        segments = []
        last = False
        for index, telegram in enumerate(frames):
            ci = telegram.control_information
            if telegram.type != mbus.TelegramType.LONG_FRAME or ci is None or ci > MBUS_CI_MAX:
                raise SoftFailure("telegram is not a DLMS segment")
            if ci & MBUS_CI_SEQUENCE_MASK != index & MBUS_CI_SEQUENCE_MASK:
                raise SoftFailure("segment out of sequence")
            if last:
                raise SoftFailure("segment after the last segment")
            if len(telegram.user_data) < MBUS_TRANSPORT_HEADER_SIZE:
                raise SoftFailure("missing transport header")
            last = bool(ci & MBUS_CI_LAST_SEGMENT)
            segments.append(telegram.user_data[MBUS_TRANSPORT_HEADER_SIZE:])

        if not last:
            raise Incomplete(1)
        return _decrypt_final(self.dlms, b"".join(segments))


class HdlcDataLinkLayer:
    name = "hdlc"

    def __init__(self, dlms: Dlms):
        self.dlms = dlms

    def __repr__(self) -> str:
        return f"HdlcDataLinkLayer({self.dlms!r})"

    def parse_frame(self, data) -> tuple[hdlc.HdlcFrame, memoryview]:
        try:
            return hdlc.parse_frame(data)
        except hdlc.Incomplete as e:
            raise Incomplete(e.needed) from None
        except hdlc.FrameError as e:
            raise Malformed(type(e).__name__) from e

    def decrypt(self, frames: Sequence[hdlc.HdlcFrame]) -> DataNotification:
        if any(not frame.segmented for frame in frames[:-1]):
            raise SoftFailure("segment after the last segment")
        if frames[-1].segmented:
            raise Incomplete(1)

        first = bytes(frames[0].information)
        if first[:3] in HDLC_LLC_HEADERS:
            first = first[3:]
        payload = first + b"".join(frame.information for frame in frames[1:])
        return _decrypt_final(self.dlms, payload)


LINK_LAYERS = {
    MBusDataLinkLayer.name: MBusDataLinkLayer,
    HdlcDataLinkLayer.name: HdlcDataLinkLayer,
}


def for_name(name: str, dlms: Dlms) -> DataLinkLayer:
    """Create the link layer called ``name`` ("mbus" or "hdlc")."""
    try:
        return LINK_LAYERS[name.lower()](dlms)
    except KeyError:
        raise ValueError(f"unknown link layer {name!r}; expected one of {sorted(LINK_LAYERS)}") from None
