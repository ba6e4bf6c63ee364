import pytest

from helpers import AUTH_KEY, KEY, OTHER_KEY, ciphered, hdlc_frames, mbus_telegrams
from smart_meter import hdlc, mbus
from smart_meter.dlms import Dlms
from smart_meter.errors import DecryptionFailed, Incomplete, Malformed, SoftFailure
from smart_meter.link import HdlcDataLinkLayer, MBusDataLinkLayer, for_name


def _parse_all(link, chunks):
    return [link.parse_frame(chunk)[0] for chunk in chunks]


@pytest.fixture
def mbus_link():
    return MBusDataLinkLayer(Dlms(KEY))


@pytest.fixture
def hdlc_link():
    return HdlcDataLinkLayer(Dlms(KEY))


def test_mbus_parse_errors_are_translated(mbus_link):
    with pytest.raises(Incomplete) as excinfo:
        mbus_link.parse_frame(b"")
    assert excinfo.value.needed == 1

    with pytest.raises(Incomplete) as excinfo:
        mbus_link.parse_frame(b"\x68\x41")
    assert excinfo.value.needed == 2

    with pytest.raises(Malformed):
        mbus_link.parse_frame(b"\x00")


def test_mbus_segments(mbus_link):
    frames = _parse_all(mbus_link, mbus_telegrams(ciphered(invoke_id=8), segment_size=25))

    with pytest.raises(Incomplete):
        mbus_link.decrypt(frames[:1])
    with pytest.raises(Incomplete):
        mbus_link.decrypt(frames[:2])
    assert mbus_link.decrypt(frames).invoke_id == 8


def test_mbus_out_of_sequence(mbus_link):
    frames = _parse_all(mbus_link, mbus_telegrams(ciphered(), segment_size=25))

    with pytest.raises(SoftFailure):
        mbus_link.decrypt(frames[1:])
    with pytest.raises(SoftFailure):
        mbus_link.decrypt([frames[0], frames[2]])


def test_mbus_segment_after_last(mbus_link):
    (single,) = _parse_all(mbus_link, mbus_telegrams(ciphered()))
    (second,) = _parse_all(mbus_link, [mbus.build_long_frame(0x53, 0xFF, 0x11, b"\x01\x67" + bytes(8))])

    # sequence numbers match but the first frame was already final
    with pytest.raises(SoftFailure):
        mbus_link.decrypt([single, second])


def test_mbus_non_dlms_telegrams(mbus_link):
    ack, _ = mbus_link.parse_frame(b"\xe5")
    with pytest.raises(SoftFailure):
        mbus_link.decrypt([ack])

    (other,) = _parse_all(mbus_link, [mbus.build_long_frame(0x08, 0x01, 0x72, bytes(20))])
    with pytest.raises(SoftFailure):
        mbus_link.decrypt([other])


def test_mbus_last_segment_with_truncated_apdu(mbus_link):
    apdu = ciphered()
    (telegram,) = _parse_all(mbus_link, mbus_telegrams(apdu[:40]))

    with pytest.raises(SoftFailure):
        mbus_link.decrypt([telegram])


def test_mbus_wrong_key_is_hard_failure():
    link = MBusDataLinkLayer(Dlms(OTHER_KEY, AUTH_KEY))
    frames = _parse_all(link, mbus_telegrams(ciphered(security_control=0x30, auth_key=AUTH_KEY)))

    with pytest.raises(DecryptionFailed):
        link.decrypt(frames)


def test_hdlc_segments(hdlc_link):
    frames = _parse_all(hdlc_link, hdlc_frames(ciphered(invoke_id=12), segment_size=20))

    assert len(frames) == 4
    with pytest.raises(Incomplete):
        hdlc_link.decrypt(frames[:3])
    assert hdlc_link.decrypt(frames).invoke_id == 12


def test_hdlc_without_llc_header(hdlc_link):
    (frame,) = _parse_all(hdlc_link, [hdlc.build_frame(ciphered(invoke_id=13))])

    assert hdlc_link.decrypt([frame]).invoke_id == 13


def test_hdlc_segment_after_last(hdlc_link):
    (frame,) = _parse_all(hdlc_link, hdlc_frames(ciphered()))

    with pytest.raises(SoftFailure):
        hdlc_link.decrypt([frame, frame])


def test_hdlc_joined_mid_message(hdlc_link):
    frames = _parse_all(hdlc_link, hdlc_frames(ciphered(), segment_size=20))

    with pytest.raises(SoftFailure):
        hdlc_link.decrypt(frames[1:])


def test_hdlc_parse_errors_are_translated(hdlc_link):
    with pytest.raises(Incomplete):
        hdlc_link.parse_frame(b"\x7e")
    with pytest.raises(Malformed):
        hdlc_link.parse_frame(b"\x7e\x00\x00")


@pytest.mark.parametrize("name, cls", [("mbus", MBusDataLinkLayer), ("HDLC", HdlcDataLinkLayer)])
def test_for_name(name, cls):
    assert isinstance(for_name(name, Dlms(KEY)), cls)


def test_for_name_unknown():
    with pytest.raises(ValueError):
        for_name("iec62056-21", Dlms(KEY))
