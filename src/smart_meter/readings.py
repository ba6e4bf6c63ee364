"""Readings: decoded OBIS register maps on top of a stream of decrypted messages."""

from collections.abc import Iterable

from smart_meter.dlms import DataNotification, DecodeError, Dlms, ObisMap
from smart_meter.log import logger, stats_logger
from smart_meter.reader import apdu_iter


class ObisIterator:
    """
    Yields one ObisMap per message that decodes.

    Messages whose body cannot be decoded are skipped. Errors raised by the
    underlying message iterator are passed through unchanged; pulling again
    after a ReadError is allowed, after DecryptionFailed the iterator ends.
    """

    def __init__(self, messages: Iterable[DataNotification]):
        self.__messages = iter(messages)

    def __iter__(self):
        return self

    def __next__(self) -> ObisMap:
        for message in self.__messages:
            try:
                registers = ObisMap.parse(message)
            except DecodeError as e:
                stats_logger.increment("decode_errors")
                logger.debug("reading_decode_failed", error=str(e), invoke_id=message.invoke_id)
                continue

            stats_logger.increment("readings_decoded")
            return registers

        raise StopIteration


def open_readings(reader, dlms: Dlms, link: str = "mbus") -> ObisIterator:
    """Iterate the register maps pushed over ``reader`` on the given link layer."""
    return ObisIterator(apdu_iter(reader, dlms, link))
