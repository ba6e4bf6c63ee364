import pytest

from smart_meter import config


def test_parse_key():
    assert config.parse_key("36C66639E48A8CA4D6BC8B282A793BBB") == bytes.fromhex("36C66639E48A8CA4D6BC8B282A793BBB")
    assert config.parse_key("36 C6 66 39 E4 8A 8C A4 D6 BC 8B 28 2A 79 3B BB")[:2] == b"\x36\xc6"


@pytest.mark.parametrize("text", ["", "36C6", "zz" * 16, "00" * 17])
def test_parse_key_invalid(text):
    with pytest.raises(ValueError):
        config.parse_key(text)


@pytest.mark.parametrize(
    "url, expected",
    [
        ("mqtt://broker", ("broker", 1883, "tcp", False, None)),
        ("mqtts://broker:8884", ("broker", 8884, "tcp", True, None)),
        ("ws://broker/mqtt", ("broker", 80, "websockets", False, "/mqtt")),
        ("wss://broker", ("broker", 443, "websockets", True, None)),
        ("mqtt://", ("localhost", 1883, "tcp", False, None)),
    ],
)
def test_parse_mqtt_url(url, expected):
    assert config._parse_mqtt_url(url) == expected


def test_parse_mqtt_url_unsupported_scheme():
    with pytest.raises(ValueError):
        config._parse_mqtt_url("http://broker")


def test_env_helpers(monkeypatch):
    monkeypatch.setenv("SMART_METER_TEST_INT", "12")
    monkeypatch.setenv("SMART_METER_TEST_BAD_INT", "twelve")
    monkeypatch.setenv("SMART_METER_TEST_BOOL", "Yes")

    assert config._get_int_env("SMART_METER_TEST_INT", 1) == 12
    assert config._get_int_env("SMART_METER_TEST_BAD_INT", 1) == 1
    assert config._get_int_env("SMART_METER_TEST_UNSET", 7) == 7
    assert config._get_bool_env("SMART_METER_TEST_BOOL", False) is True
    assert config._get_bool_env("SMART_METER_TEST_UNSET", True) is True
