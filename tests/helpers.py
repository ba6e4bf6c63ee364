"""Builders for meter streams used across the tests."""

from smart_meter import hdlc, mbus
from smart_meter.dlms import Dlms, encode_data_notification
from smart_meter.errors import Incomplete, Malformed

KEY = bytes.fromhex("36C66639E48A8CA4D6BC8B282A793BBB")
AUTH_KEY = bytes.fromhex("D0D1D2D3D4D5D6D7D8D9DADBDCDDDEDF")
OTHER_KEY = bytes.fromhex("000102030405060708090A0B0C0D0E0F")
SYSTEM_TITLE = b"KFM\x10\x20\x00\x4e\x61"

# structure {
#   1-0:1.8.0  double-long-unsigned 12345  {scaler 0, unit 30}
#   1-0:32.7.0 long-unsigned 2305          {scaler -1, unit 35}
# }
BODY = bytes.fromhex(
    "0206"
    "0906 0100010800FF" "06 00003039" "0202 0F00 161E"
    "0906 0100200700FF" "12 0901" "0202 0FFF 1623"
)


def notification(invoke_id=1, body=BODY):
    return encode_data_notification(invoke_id, body)


def ciphered(invoke_id=1, body=BODY, security_control=0x20, key=KEY, auth_key=None):
    dlms = Dlms(key, auth_key)
    return dlms.encrypt_apdu(notification(invoke_id, body), SYSTEM_TITLE, invoke_id, security_control)


def split(data, size):
    return [data[i : i + size] for i in range(0, len(data), size)]


def mbus_telegrams(apdu, segment_size=None):
    """Wrap a ciphered APDU into DLMS M-Bus segments (STSAP 0x01, DTSAP 0x67)."""
    chunks = split(apdu, segment_size) if segment_size else [apdu]
    telegrams = []
    for seq, chunk in enumerate(chunks):
        ci = seq & 0x0F
        if seq == len(chunks) - 1:
            ci |= 0x10
        telegrams.append(mbus.build_long_frame(0x53, 0xFF, ci, b"\x01\x67" + chunk))
    return telegrams


def hdlc_frames(apdu, segment_size=None):
    """Wrap a ciphered APDU into HDLC frames, LLC header in the first one."""
    payload = b"\xe6\xe7\x00" + apdu
    chunks = split(payload, segment_size) if segment_size else [payload]
    return [
        hdlc.build_frame(chunk, segmented=index < len(chunks) - 1)
        for index, chunk in enumerate(chunks)
    ]


class ChunkedSource:
    """Byte source that records every read request and returns at most ``chunk`` bytes."""

    def __init__(self, data, chunk=None):
        self.data = bytearray(data)
        self.chunk = chunk
        self.requests = []

    def read(self, n):
        self.requests.append(n)
        size = n if self.chunk is None else min(n, self.chunk)
        out = bytes(self.data[:size])
        del self.data[:size]
        return out


def fake_frame(payload):
    return bytes([FakeLink.START, len(payload)]) + payload


class FakeLink:
    """Link layer with trivial framing (F0 len payload) and scriptable decryption.

    A payload starting with 0xEE is a corrupt frame. ``decide`` receives the
    list of frame payloads and returns the message or raises.
    """

    name = "fake"
    START = 0xF0

    def __init__(self, decide=None):
        self.decide = decide or (lambda payloads: tuple(payloads))
        self.parses = []
        self.decrypts = []

    def parse_frame(self, data):
        view = memoryview(data)
        outcome = "complete"
        try:
            if len(view) == 0:
                raise Incomplete(None)
            if view[0] != self.START:
                raise Malformed("start")
            if len(view) < 2:
                raise Incomplete(1)
            total = 2 + view[1]
            if len(view) < total:
                raise Incomplete(total - len(view))
            if view[1] and view[2] == 0xEE:
                raise Malformed("corrupt")
            return bytes(view[2:total]), view[total:]
        except Incomplete:
            outcome = "incomplete"
            raise
        except Malformed:
            outcome = "malformed"
            raise
        finally:
            self.parses.append((len(view), outcome))

    def decrypt(self, frames):
        self.decrypts.append(list(frames))
        return self.decide(list(frames))
