import pytest
import serial

from smart_meter import transport


@pytest.mark.parametrize(
    "port, tcp",
    [
        ("/dev/serial0", False),
        ("COM3", False),
        ("192.168.1.20:8899", True),
        ("meter.local:23", True),
        ("socket://meter.local:23", True),
    ],
)
def test_is_tcp_address(port, tcp):
    assert transport.is_tcp_address(port) is tcp


def test_tcp_source(monkeypatch):
    opened = []

    def serial_for_url(url, **kwargs):
        opened.append((url, kwargs))
        return "stream"

    monkeypatch.setattr(serial, "serial_for_url", serial_for_url)

    assert transport.open_stream("192.168.1.20:8899") == "stream"
    assert opened == [("socket://192.168.1.20:8899", {"timeout": None})]


@pytest.mark.parametrize(
    "settings",
    [{"parity": "X"}, {"bytesize": 9}, {"stopbits": 3}],
)
def test_unsupported_serial_settings(settings):
    with pytest.raises(ValueError):
        transport.open_stream("/dev/does-not-exist", **settings)


def test_missing_serial_port():
    with pytest.raises(serial.SerialException):
        transport.open_stream("/dev/does-not-exist")
