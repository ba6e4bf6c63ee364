"""DLMS/COSEM application layer: decryption of pushed APDUs and register decoding."""

from .apdu import DataNotification, encode_data_notification
from .axdr import Data, DataType, decode_data, parse_data
from .cipher import CipheredApdu, Dlms, parse_ciphered_apdu
from .errors import DecodeError, DecryptionFailed, DlmsError, Incomplete, InvalidFormat
from .obis import ObisCode, ObisMap, Register

__all__ = [
    "CipheredApdu",
    "Data",
    "DataNotification",
    "DataType",
    "DecodeError",
    "DecryptionFailed",
    "Dlms",
    "DlmsError",
    "Incomplete",
    "InvalidFormat",
    "ObisCode",
    "ObisMap",
    "Register",
    "decode_data",
    "encode_data_notification",
    "parse_ciphered_apdu",
    "parse_data",
]
