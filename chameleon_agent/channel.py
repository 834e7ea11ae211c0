"""
Transports and the serialized outbound channel.

A transport is a plain byte pipe: read() returns whatever chunk arrived
(b"" at end of stream) and write() sends bytes. Chunk boundaries carry no
meaning; the framing layer above reassembles everything.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, ConnectionClosedOK

from .wire import encode_frame

logger = logging.getLogger(__name__)


class Transport:
    """Byte stream interface used by the connection driver."""

    async def read(self) -> bytes:
        raise NotImplementedError

    async def write(self, data: bytes):
        raise NotImplementedError

    async def close(self):
        raise NotImplementedError


class StreamTransport(Transport):
    """Plain TCP transport over asyncio streams."""

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        read_size: int = 64 * 1024,
    ):
        self.reader = reader
        self.writer = writer
        self.read_size = read_size

    @classmethod
    async def connect(
        cls, host: str, port: int, read_size: int = 64 * 1024
    ) -> "StreamTransport":
        reader, writer = await asyncio.open_connection(host, port)
        logger.info(f"Connected to controller {host}:{port}")
        return cls(reader, writer, read_size)

    async def read(self) -> bytes:
        return await self.reader.read(self.read_size)

    async def write(self, data: bytes):
        self.writer.write(data)
        await self.writer.drain()

    async def close(self):
        if self.writer.is_closing():
            return
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error closing stream: {e}")


class WebSocketTransport(Transport):
    """Transport over a WebSocket connection.

    Each WebSocket message is treated as an arbitrary chunk of the byte
    stream; frames may span several messages.
    """

    def __init__(self, websocket: ClientConnection):
        self.websocket = websocket

    @classmethod
    async def connect(cls, url: str, open_timeout: float = 30) -> "WebSocketTransport":
        websocket = await connect(url, open_timeout=open_timeout, max_size=None)
        logger.info(f"Connected to controller {url}")
        return cls(websocket)

    async def read(self) -> bytes:
        try:
            message = await self.websocket.recv()
        except ConnectionClosedOK:
            return b""
        except ConnectionClosed as e:
            logger.warning(f"WebSocket closed abnormally: {e}")
            return b""
        if isinstance(message, str):
            return message.encode("utf-8")
        return message

    async def write(self, data: bytes):
        await self.websocket.send(data)

    async def close(self):
        await self.websocket.close()


class OutboundChannel:
    """The single writer for one connection.

    Control frames and binary spans share the lock, so terminal output can
    never be interleaved inside a file payload.
    """

    def __init__(self, transport: Transport):
        self.transport = transport
        self._lock = asyncio.Lock()
        self._span_owner: Optional[asyncio.Task] = None

    async def send(self, message):
        """Encode and send one control message."""
        data = encode_frame(message.to_dict())
        async with self._lock:
            logger.debug(f"-> {message.kind.value} ({len(data)} bytes)")
            await self.transport.write(data)

    @asynccontextmanager
    async def span(self) -> AsyncIterator["OutboundChannel"]:
        """Hold the channel for the whole of a binary span."""
        async with self._lock:
            self._span_owner = asyncio.current_task()
            try:
                yield self
            finally:
                self._span_owner = None

    async def write_raw(self, data: bytes):
        """Write raw span bytes. Only valid inside span()."""
        if self._span_owner is not asyncio.current_task():
            raise RuntimeError("write_raw() called outside of span()")
        await self.transport.write(data)
