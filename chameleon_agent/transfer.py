"""
Transfer Coordinator

Byte counting for binary spans in both directions.

Incoming spans are exactly declared_size payload bytes followed by a single
delimiter byte. The payload goes to the sink; the delimiter is consumed
and dropped, never written and never left for the text parser.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import BinaryIO, Union

from .channel import OutboundChannel
from .errors import MalformedFrame, SinkWriteFailure
from .storage import FileStorage
from .wire import DELIMITER, take_binary_span

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InProgress:
    """More payload (or the trailing delimiter) is still expected."""


@dataclass(frozen=True)
class Completed:
    """The span and its delimiter were consumed; remainder is text."""

    remainder: bytes


IN_PROGRESS = InProgress()

TransferOutcome = Union[InProgress, Completed]


class IncomingTransfer:
    """An announced transfer being written to a sink."""

    def __init__(self, path: str, declared_size: int, sink: BinaryIO, storage: FileStorage):
        if declared_size <= 0:
            raise ValueError("Incoming transfers must declare a positive size")
        self.path = path
        self.declared_size = declared_size
        self.consumed = 0
        self.sink = sink
        self.storage = storage
        self.finalized = False

    @classmethod
    async def open(cls, storage: FileStorage, path: str, declared_size: int) -> "IncomingTransfer":
        try:
            sink = await asyncio.to_thread(storage.open_sink, path)
        except OSError as e:
            raise SinkWriteFailure(path, e) from e
        logger.info(f"Receiving file: {path} ({declared_size} bytes)")
        return cls(path, declared_size, sink, storage)

    @property
    def remaining(self) -> int:
        return self.declared_size - self.consumed

    @property
    def awaiting_delimiter(self) -> bool:
        return self.consumed == self.declared_size

    async def feed(self, data: bytes) -> TransferOutcome:
        """Consume bytes from one read.

        The sink write is awaited before returning so the caller does not
        read again until the data is persisted.
        """
        if not self.awaiting_delimiter:
            taken, data = take_binary_span(data, self.remaining)
            if taken:
                await self._write(taken)
                self.consumed += len(taken)
            if self.awaiting_delimiter:
                await self._finalize()

        if not self.awaiting_delimiter or not data:
            return IN_PROGRESS

        if data[:1] != DELIMITER:
            raise MalformedFrame(
                data[:64], f"expected delimiter after {self.declared_size}-byte span"
            )
        logger.info(f"File received: {self.path} ({self.consumed} bytes)")
        return Completed(data[1:])

    async def abort(self):
        """Release the sink of an unfinished transfer."""
        if self.finalized:
            return
        self.finalized = True
        logger.warning(
            f"Aborting transfer of {self.path} at {self.consumed}/{self.declared_size} bytes"
        )
        await asyncio.to_thread(self.storage.discard, self.sink)

    async def _write(self, data: bytes):
        try:
            await asyncio.to_thread(self.storage.write, self.sink, data)
        except OSError as e:
            raise SinkWriteFailure(self.path, e) from e

    async def _finalize(self):
        self.finalized = True
        try:
            await asyncio.to_thread(self.storage.finalize, self.sink)
        except OSError as e:
            raise SinkWriteFailure(self.path, e) from e


class OutgoingTransfer:
    """An announced file waiting for the controller's WaitReceive."""

    def __init__(self, path: str, size: int, source: BinaryIO, storage: FileStorage):
        self.path = path
        self.size = size
        self.source = source
        self.storage = storage
        self.sent = 0

    async def stream(self, channel: OutboundChannel, chunk_size: int = 64 * 1024):
        """Send exactly size bytes followed by one delimiter.

        The channel is held for the whole span. A source that shrank since it
        was announced is padded with zeros so the receiver stays in sync.
        """
        logger.info(f"Sending file: {self.path} ({self.size} bytes)")
        try:
            async with channel.span():
                while self.sent < self.size:
                    want = min(chunk_size, self.size - self.sent)
                    chunk = await asyncio.to_thread(self.storage.read, self.source, want)
                    if not chunk:
                        logger.error(
                            f"{self.path} shrank during transfer, padding {self.size - self.sent} bytes"
                        )
                        chunk = b"\0" * want
                    await channel.write_raw(chunk)
                    self.sent += len(chunk)
                await channel.write_raw(DELIMITER)
        finally:
            await self.close()
        logger.info(f"File sent: {self.path} ({self.sent} bytes)")

    async def close(self):
        await asyncio.to_thread(self.storage.close_source, self.source)
