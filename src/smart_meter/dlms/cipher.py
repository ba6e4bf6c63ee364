"""
General-glo-ciphering (DLMS security suite 0, AES-GCM-128).

APDU layout::

    DB | 08 | system title (8) | length | SC | invocation counter (4) | ciphertext | [tag (12)]

- SC (security control): 0x20 encryption, 0x10 authentication, low nibble
  is the security suite id (only suite 0 is supported)
- IV: system title + invocation counter
- With encryption only, the ciphertext is the GCM keystream applied to the
  plaintext and cannot be verified; with authentication the tag covers
  SC + authentication key + ciphertext
"""

from dataclasses import dataclass

from Crypto.Cipher import AES

from smart_meter.dlms.apdu import DataNotification
from smart_meter.dlms.axdr import decode_length, encode_length
from smart_meter.dlms.errors import (
    DecodeError,
    DecryptionFailed,
    Incomplete,
    InvalidFormat,
    TruncatedData,
)

GENERAL_GLO_CIPHERING = 0xDB
SYSTEM_TITLE_LENGTH = 8
KEY_LENGTH = 16
TAG_LENGTH = 12

SECURITY_COMPRESSION = 0x80
SECURITY_ENCRYPTION = 0x20
SECURITY_AUTHENTICATION = 0x10
SECURITY_SUITE_MASK = 0x0F


@dataclass(frozen=True)
class CipheredApdu:
    system_title: bytes
    security_control: int
    invocation_counter: int
    ciphertext: bytes
    tag: bytes | None = None

    @property
    def iv(self) -> bytes:
        return self.system_title + self.invocation_counter.to_bytes(4, "big")


def parse_ciphered_apdu(payload) -> tuple[CipheredApdu, bytes]:
    """Split a general-glo-ciphering APDU into its fields.

    Returns:
        ``(apdu, remainder)``; bytes after the declared length are returned untouched.

    Raises:
        Incomplete: the payload ends before the declared length.
        InvalidFormat: the payload is not a general-glo-ciphering APDU.
    """
    data = bytes(payload)
    if not data:
        raise Incomplete()
    if data[0] != GENERAL_GLO_CIPHERING:
        raise InvalidFormat(f"unexpected APDU tag 0x{data[0]:02X}")
    if len(data) < 2 + SYSTEM_TITLE_LENGTH:
        raise Incomplete()
    if data[1] != SYSTEM_TITLE_LENGTH:
        raise InvalidFormat("invalid system title length")
    system_title = data[2 : 2 + SYSTEM_TITLE_LENGTH]

    try:
        length, pos = decode_length(data, 2 + SYSTEM_TITLE_LENGTH)
    except TruncatedData:
        raise Incomplete() from None
    except DecodeError as e:
        raise InvalidFormat(str(e)) from e

    if length < 5:
        raise InvalidFormat("ciphered content too short")
    end = pos + length
    if len(data) < end:
        raise Incomplete()

    security_control = data[pos]
    invocation_counter = int.from_bytes(data[pos + 1 : pos + 5], "big")
    content = data[pos + 5 : end]
    tag = None
    if security_control & SECURITY_AUTHENTICATION:
        if len(content) < TAG_LENGTH:
            raise InvalidFormat("missing authentication tag")
        content, tag = content[:-TAG_LENGTH], content[-TAG_LENGTH:]

    apdu = CipheredApdu(system_title, security_control, invocation_counter, content, tag)
    return apdu, data[end:]


class Dlms:
    """Decrypts pushed APDUs with key material fixed at construction."""

    def __init__(self, key: bytes, authentication_key: bytes | None = None):
        if len(key) != KEY_LENGTH:
            raise ValueError("key must be 16 bytes")
        if authentication_key is not None and len(authentication_key) != KEY_LENGTH:
            raise ValueError("authentication key must be 16 bytes")
        self.__key = bytes(key)
        self.__authentication_key = authentication_key

    def __repr__(self) -> str:
        return f"Dlms(authenticated={self.__authentication_key is not None})"

    def __check_suite(self, security_control: int):
        if security_control & (SECURITY_COMPRESSION | SECURITY_SUITE_MASK):
            raise InvalidFormat(f"unsupported security control 0x{security_control:02X}")
        if not security_control & SECURITY_ENCRYPTION:
            raise InvalidFormat("APDU is not encrypted")

    def decrypt(self, apdu: CipheredApdu) -> bytes:
        self.__check_suite(apdu.security_control)

        if apdu.tag is None:
            # GCM encrypts starting from counter block 2
            cipher = AES.new(self.__key, AES.MODE_CTR, nonce=apdu.iv, initial_value=2)
            return cipher.decrypt(apdu.ciphertext)

        if self.__authentication_key is None:
            raise DecryptionFailed("authenticated APDU but no authentication key configured")
        cipher = AES.new(self.__key, AES.MODE_GCM, nonce=apdu.iv, mac_len=TAG_LENGTH)
        cipher.update(bytes([apdu.security_control]) + self.__authentication_key)
        try:
            return cipher.decrypt_and_verify(apdu.ciphertext, apdu.tag)
        except ValueError as e:
            raise DecryptionFailed("authentication tag mismatch") from e

    def decrypt_apdu(self, payload) -> DataNotification:
        """Decrypt a general-glo-ciphering APDU into a data-notification."""
        apdu, _ = parse_ciphered_apdu(payload)
        return DataNotification.parse(self.decrypt(apdu))

    def encrypt_apdu(
        self,
        plaintext: bytes,
        system_title: bytes,
        invocation_counter: int,
        security_control: int = SECURITY_ENCRYPTION,
    ) -> bytes:
        """Build a general-glo-ciphering APDU the way a meter pushes it."""
        if len(system_title) != SYSTEM_TITLE_LENGTH:
            raise ValueError("system title must be 8 bytes")
        self.__check_suite(security_control)
        iv = system_title + invocation_counter.to_bytes(4, "big")

        if security_control & SECURITY_AUTHENTICATION:
            if self.__authentication_key is None:
                raise ValueError("authentication key required")
            cipher = AES.new(self.__key, AES.MODE_GCM, nonce=iv, mac_len=TAG_LENGTH)
            cipher.update(bytes([security_control]) + self.__authentication_key)
            ciphertext, tag = cipher.encrypt_and_digest(plaintext)
            content = ciphertext + tag
        else:
            cipher = AES.new(self.__key, AES.MODE_CTR, nonce=iv, initial_value=2)
            content = cipher.encrypt(plaintext)

        ciphered = bytes([security_control]) + invocation_counter.to_bytes(4, "big") + content
        return (
            bytes([GENERAL_GLO_CIPHERING, SYSTEM_TITLE_LENGTH])
            + system_title
            + encode_length(len(ciphered))
            + ciphered
        )
