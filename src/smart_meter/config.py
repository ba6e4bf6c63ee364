"""
  Configuration for smart_meter

  This module reads configuration from environment variables with sensible defaults.
  For Docker deployments, set environment variables instead of editing this file.

  Configure:
  - Meter key material and link layer
  - Serial port or TCP source
  - MQTT client

  Logging (SMART_METER_LOGLEVEL, SMART_METER_LOG_FORMAT,
  SMART_METER_STATS_LOG_INTERVAL) is read by smart_meter.log when it is imported.

"""

import os
from urllib.parse import urlparse


def _get_bool_env(name, default):
    """Get boolean value from environment variable."""
    value = os.environ.get(name)
    if value is None:
        return default
    return value.lower() in ('true', '1', 'yes', 'on')


def _get_int_env(name, default):
    """Get integer value from environment variable."""
    value = os.environ.get(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def parse_key(text):
    """
    Parse 16 bytes of key material written as 32 hex characters.

    Spaces are allowed between bytes. Raises ValueError on anything else.
    """
    try:
        key = bytes.fromhex(text.replace(" ", ""))
    except ValueError as e:
        raise ValueError("key is not valid hex") from e
    if len(key) != 16:
        raise ValueError(f"key must be 16 bytes, got {len(key)}")
    return key


def _parse_mqtt_url(url):
    """
    Parse an MQTT URL and return connection parameters.

    Supported URL schemes:
    - mqtt://host:port - TCP connection (default port 1883)
    - mqtts://host:port - TCP with TLS connection (default port 8883)
    - ws://host:port/path - WebSocket connection (default port 80)
    - wss://host:port/path - WebSocket Secure connection (default port 443)

    Returns:
        tuple: (host, port, transport, use_tls, path)
    """
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()

    scheme_config = {
        'mqtt': {'transport': 'tcp', 'default_port': 1883, 'use_tls': False},
        'mqtts': {'transport': 'tcp', 'default_port': 8883, 'use_tls': True},
        'ws': {'transport': 'websockets', 'default_port': 80, 'use_tls': False},
        'wss': {'transport': 'websockets', 'default_port': 443, 'use_tls': True},
    }

    if scheme not in scheme_config:
        raise ValueError(f"Unsupported MQTT URL scheme: {scheme}. "
                         f"Supported schemes: mqtt://, mqtts://, ws://, wss://")

    config = scheme_config[scheme]
    host = parsed.hostname or 'localhost'
    port = parsed.port or config['default_port']
    path = parsed.path if parsed.path else None

    return host, port, config['transport'], config['use_tls'], path


# [ METER ]
# Key material as provided by the grid operator, 32 hex characters
# The authentication key is only needed for meters that push authenticated APDUs
METER_KEY = os.environ.get("SMART_METER_KEY", "")
METER_AUTH_KEY = os.environ.get("SMART_METER_AUTH_KEY", "")

# Physical layer of the customer interface: "mbus" or "hdlc"
METER_LINK = os.environ.get("SMART_METER_LINK", "mbus").lower()

# [ Serial / TCP source ]
# A value containing ":" is a host:port TCP endpoint (eg a serial-to-ethernet bridge)
ser_port = os.environ.get("SERIAL_PORT", "/dev/serial0")
ser_baudrate = _get_int_env("SERIAL_BAUDRATE", 2400)
ser_parity = os.environ.get("SERIAL_PARITY", "E").upper()
ser_bytesize = _get_int_env("SERIAL_BYTESIZE", 8)
ser_stopbits = _get_int_env("SERIAL_STOPBITS", 1)

# [ MQTT Parameters ]
# MQTT_URL: Use URL-style configuration for MQTT connections
# If MQTT_URL is not set, MQTT_BROKER and MQTT_PORT are used
MQTT_URL = os.environ.get("MQTT_URL", "")

_MQTT_BROKER_DEFAULT = os.environ.get("MQTT_BROKER", "localhost")
_MQTT_PORT_DEFAULT = _get_int_env("MQTT_PORT", 1883)

if MQTT_URL:
    MQTT_BROKER, MQTT_PORT, MQTT_TRANSPORT, MQTT_USE_TLS, MQTT_WS_PATH = _parse_mqtt_url(MQTT_URL)
else:
    MQTT_BROKER = _MQTT_BROKER_DEFAULT
    MQTT_PORT = _MQTT_PORT_DEFAULT
    MQTT_TRANSPORT = "tcp"
    MQTT_USE_TLS = _get_bool_env("MQTT_USE_TLS", False)
    MQTT_WS_PATH = None

MQTT_CLIENT_ID = os.environ.get("MQTT_CLIENT_ID", "mqtt-smart-meter")
MQTT_QOS = _get_int_env("MQTT_QOS", 1)
MQTT_USERNAME = os.environ.get("MQTT_USERNAME", "")
MQTT_PASSWORD = os.environ.get("MQTT_PASSWORD", "")

# MAX number of readings published per hour
# EXAMPLE: 12: every 5min, 60: every 1min, 720: every 5sec, 3600: every 1sec
# Actual rate will never be higher than the push rate of the meter
# MQTT_MAXRATE = [1..3600]
MQTT_MAXRATE = _get_int_env("MQTT_MAXRATE", 360)

# MQTT topic prefix
MQTT_TOPIC_PREFIX = os.environ.get("MQTT_TOPIC_PREFIX", "smartmeter")
