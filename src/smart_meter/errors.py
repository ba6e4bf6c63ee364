"""
Error taxonomy for the smart meter reader.

Only two errors ever reach a caller of the reader: ReadError (the byte
source failed) and DecryptionFailed (a complete message could not be
authenticated). Everything else is framing noise which the reader handles
by reading more bytes, accumulating more frames or resynchronising.

The link layers translate the exceptions of the frame grammars and of the
DLMS layer into Incomplete, Malformed, SoftFailure and DecryptionFailed, so
the reassembly loop only ever branches on the classes below.
"""


class SmartMeterError(Exception):
    """Base class for errors surfaced by the reader."""


class ReadError(SmartMeterError):
    """The byte source failed or reached end of stream."""


class DecryptionFailed(SmartMeterError):
    """A message was framed correctly but could not be decrypted or authenticated.

    Terminal for the stream: the reader stops yielding after raising it.
    """

    def __str__(self):
        return super().__str__() or "decryption failed"


class Incomplete(Exception):
    """More input is required; ``needed`` is the minimum amount (bytes or frames)."""

    def __init__(self, needed=None):
        super().__init__(needed)
        self.needed = needed if needed else 1


class Malformed(Exception):
    """The data at the front of the buffer is not a valid frame."""


class SoftFailure(Exception):
    """The accumulated frames do not form a valid message; the first frame is dropped."""


__all__ = [
    "SmartMeterError",
    "ReadError",
    "DecryptionFailed",
    "Incomplete",
    "Malformed",
    "SoftFailure",
]
