"""
Connection Driver

Owns one transport and feeds every chunk read from it through the session's
current mode:

- TEXT: carry + chunk is split into frames; each frame is decoded and
  dispatched in order. If a handler switches the session to binary mode,
  the undispatched frames and remainder are reassembled byte-for-byte and
  handed to the binary path within the same read.
- BINARY: the active IncomingTransfer consumes bytes until its span and
  trailing delimiter are done; leftover bytes go back through TEXT.

Everything for a connection runs in one coroutine, so frames are dispatched
strictly in arrival order and the next read only happens after the previous
chunk (including its sink writes) was fully processed.
"""

import logging
from typing import Optional

from .channel import OutboundChannel, Transport
from .config import AgentConfig
from .errors import FrameTooLarge
from .handlers import Registry, dispatch
from .session import BinaryMode, Session
from .storage import FileStorage
from .terminal import TerminalBridge
from .transfer import Completed
from .wire import (
    FileReceiveEndMessage,
    LaunchMessage,
    decode,
    join_frames,
    split_frames,
)

logger = logging.getLogger(__name__)


class Connection:
    def __init__(
        self,
        transport: Transport,
        registry: Registry,
        config: AgentConfig,
        storage: Optional[FileStorage] = None,
        terminal: Optional[TerminalBridge] = None,
    ):
        self.transport = transport
        self.registry = registry
        self.config = config
        self.storage = storage or FileStorage()
        self.session = Session()
        self.channel = OutboundChannel(transport)
        self.terminal = terminal or TerminalBridge(
            self.channel,
            config.geometry,
            shell=config.shell,
            working_dir=config.working_dir,
        )
        self.closed = False

    async def run(self):
        """Serve the connection until the controller disconnects.

        Protocol errors and sink failures propagate to the caller after
        the connection's resources have been released.
        """
        try:
            await self.channel.send(
                LaunchMessage(
                    history_id=self.config.history_id,
                    model_path=self.config.model_path,
                    is_main_connection=self.config.is_main_connection,
                    execution_data=self.config.execution_data,
                )
            )
            while True:
                data = await self.transport.read()
                if not data:
                    logger.info("Controller disconnected")
                    break
                await self.data_received(data)
        finally:
            await self.close()

    async def data_received(self, data: bytes):
        """Process one chunk of the byte stream."""
        self.session.bytes_received += len(data)
        pending = data
        while pending:
            mode = self.session.mode
            if isinstance(mode, BinaryMode):
                outcome = await mode.transfer.feed(pending)
                if not isinstance(outcome, Completed):
                    return
                self.session.end_transfer()
                await self.channel.send(FileReceiveEndMessage())
                pending = outcome.remainder
            else:
                pending = await self._consume_text(pending)

    async def _consume_text(self, data: bytes) -> bytes:
        """Dispatch every complete frame in carry + data.

        Returns the bytes that must be re-read in binary mode, or b"" when
        the whole buffer was consumed as text.
        """
        frames, remainder = split_frames(self.session.carry + data)
        self.session.carry = b""

        for index, frame in enumerate(frames):
            if not frame:
                # Consecutive delimiters carry no message
                continue
            message = decode(frame)
            logger.debug(f"<- {message.kind.value}")
            await dispatch(self.registry, message, self, frame)
            self.session.frames_dispatched += 1
            if self.session.in_binary:
                return join_frames(frames[index + 1 :], remainder)

        if len(remainder) > self.config.max_frame_size:
            raise FrameTooLarge(len(remainder), self.config.max_frame_size)
        self.session.carry = remainder
        return b""

    async def close(self):
        """Release the sink, the pending source and the interactive process."""
        if self.closed:
            return
        self.closed = True

        mode = self.session.mode
        if isinstance(mode, BinaryMode):
            self.session.end_transfer()
            await mode.transfer.abort()

        outgoing = self.session.take_outgoing()
        if outgoing is not None:
            await outgoing.close()

        self.session.carry = b""
        await self.terminal.close()
        await self.transport.close()
        logger.info(
            f"Connection closed after {self.session.frames_dispatched} frames, "
            f"{self.session.bytes_received} bytes received"
        )
