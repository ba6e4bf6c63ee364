"""
smart_meter - read encrypted DLMS smart meters.

Turns the byte stream of a meter's customer interface (M-Bus or HDLC, over a
serial line or TCP) into decrypted data-notifications and OBIS register maps,
and publishes them to an MQTT broker.
"""

__version__ = "1.0.0"
__license__ = "GPLv3"

from smart_meter.errors import DecryptionFailed, ReadError, SmartMeterError
from smart_meter.reader import SmartMeter, apdu_iter
from smart_meter.readings import ObisIterator, open_readings

__all__ = [
    "__version__",
    "__license__",
    "DecryptionFailed",
    "ObisIterator",
    "ReadError",
    "SmartMeter",
    "SmartMeterError",
    "apdu_iter",
    "open_readings",
]
