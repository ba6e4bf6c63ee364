"""Errors raised by the DLMS/COSEM application layer."""


class DlmsError(Exception):
    """Base class for DLMS errors."""


class Incomplete(DlmsError):
    """The ciphered APDU needs more data; ``needed`` counts frames, if known."""

    def __init__(self, needed=None):
        super().__init__(needed)
        self.needed = needed


class InvalidFormat(DlmsError):
    pass


class DecryptionFailed(DlmsError):
    pass


class DecodeError(DlmsError):
    """A-XDR data could not be decoded."""


class TruncatedData(DecodeError):
    pass
