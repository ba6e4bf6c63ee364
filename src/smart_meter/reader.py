"""
Frame reassembly and decryption of a smart meter byte stream.

SmartMeter reads a blocking byte source (serial port, TCP stream, file)
and yields one decrypted DataNotification per pushed message:

  - only the minimum number of bytes a frame parser asks for is read
  - frames are accumulated until the link layer can decrypt the message
  - corrupt or misaligned data is skipped one byte at a time
  - a message that fails to decrypt on a soft error is retried one frame later

Only ReadError and DecryptionFailed are raised to the caller. After
DecryptionFailed the iterator is exhausted; a new SmartMeter (fresh buffer)
is needed to resume, since the stream position cannot be rewound.


        This program is free software: you can redistribute it and/or modify
        it under the terms of the GNU General Public License as published by
        the Free Software Foundation, either version 3 of the License, or
        (at your option) any later version.

        This program is distributed in the hope that it will be useful,
        but WITHOUT ANY WARRANTY; without even the implied warranty of
        MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
        GNU General Public License for more details.

        You should have received a copy of the GNU General Public License
        along with this program.  If not, see <http://www.gnu.org/licenses/>.
"""

from smart_meter.dlms import DataNotification, Dlms
from smart_meter.errors import (
    DecryptionFailed,
    Incomplete,
    Malformed,
    ReadError,
    SoftFailure,
)
from smart_meter.link import DataLinkLayer, HdlcDataLinkLayer, MBusDataLinkLayer, for_name
from smart_meter.log import logger, stats_logger


class SmartMeter:
    def __init__(self, reader, link: DataLinkLayer):
        """

        Args:
          :param reader: byte source; anything with a blocking read(n)
          :param DataLinkLayer link: frame grammar and decryption for the physical layer
        """
        self.reader = reader
        self.link = link

        # Unconsumed stream data; the front is always the oldest byte
        self.__buffer = bytearray()

        # Cursor state
        self.__bytes_needed = 0
        self.__frames_needed = 1

        self.__finished = False
        self.resyncs = 0
        self.soft_failures = 0

    @classmethod
    def mbus(cls, reader, dlms: Dlms) -> "SmartMeter":
        return cls(reader, MBusDataLinkLayer(dlms))

    @classmethod
    def hdlc(cls, reader, dlms: Dlms) -> "SmartMeter":
        return cls(reader, HdlcDataLinkLayer(dlms))

    def __repr__(self):
        return f"SmartMeter(link={self.link.name}, buffered={len(self.__buffer)})"

    def __iter__(self):
        return self

    @property
    def buffered(self) -> int:
        """Number of bytes read but not yet consumed."""
        return len(self.__buffer)

    @property
    def finished(self) -> bool:
        return self.__finished

    def __reset(self):
        self.__bytes_needed = 0
        self.__frames_needed = 1

    def __read(self):
        """
          Read exactly bytes_needed more bytes into the buffer

        Raises:
          ReadError: the source failed or the stream ended
        """
        while self.__bytes_needed > 0:
            try:
                chunk = self.reader.read(self.__bytes_needed)
            except OSError as e:
                stats_logger.increment("read_errors")
                logger.error("meter_read_failed", error_type=type(e).__name__, error=str(e))
                raise ReadError(str(e)) from e

            if not chunk:
                stats_logger.increment("read_errors")
                logger.info("meter_stream_ended", buffered=len(self.__buffer))
                raise ReadError("end of stream")

            self.__buffer += chunk
            self.__bytes_needed -= len(chunk)

    def __drain(self, count: int):
        # O(remaining) per drain; fine at meter data rates
        del self.__buffer[:count]

    def __resync(self, reason: str):
        """Drop the oldest byte after a malformed frame."""
        del self.__buffer[0]
        self.__reset()
        self.resyncs += 1
        stats_logger.increment("resync_bytes")
        logger.debug("meter_resync", reason=reason, buffered=len(self.__buffer))

    def __parse_frames(self, data: memoryview):
        """
          Parse frames_needed frames from the front of data

        Returns:
          tuple: (frames, length of the first frame, length of all frames)
        """
        frames = []
        first_length = 0
        total_length = 0
        for index in range(self.__frames_needed):
            frame, remainder = self.link.parse_frame(data)
            length = len(data) - len(remainder)
            if index == 0:
                first_length = length
            total_length += length
            frames.append(frame)
            data = remainder
        return frames, first_length, total_length

    def __next__(self) -> DataNotification:
        """
          Read until one message is decrypted

        Returns:
          DataNotification

        Raises:
          ReadError: byte source failure; pulling again resumes where it stopped
          DecryptionFailed: raised once, after which the iterator is exhausted
        """
        if self.__finished:
            raise StopIteration

        while True:
            if self.__bytes_needed > 0:
                self.__read()

            # Frames are views of this snapshot and never outlive the attempt
            snapshot = memoryview(bytes(self.__buffer))

            try:
                frames, first_length, total_length = self.__parse_frames(snapshot)
            except Incomplete as e:
                self.__bytes_needed = e.needed
                continue
            except Malformed as e:
                self.__resync(str(e))
                continue

            try:
                message = self.link.decrypt(frames)
            except Incomplete as e:
                self.__frames_needed += e.needed
                logger.debug("meter_frames_needed", frames=self.__frames_needed)
                continue
            except SoftFailure as e:
                self.__drain(first_length)
                self.__reset()
                self.soft_failures += 1
                stats_logger.increment("soft_failures")
                logger.debug("meter_frame_skipped", reason=str(e), dropped=first_length)
                continue
            except DecryptionFailed as e:
                self.__finished = True
                stats_logger.increment("decryption_errors")
                logger.error("meter_decryption_failed", error=str(e), link=self.link.name)
                raise

            self.__drain(total_length)
            self.__reset()
            stats_logger.increment("messages_received")
            logger.debug("meter_message_received", frames=len(frames), size=total_length)
            return message


def apdu_iter(reader, dlms: Dlms, link: str = "mbus") -> SmartMeter:
    """Iterate the decrypted data-notifications of a byte stream."""
    return SmartMeter(reader, for_name(link, dlms))
