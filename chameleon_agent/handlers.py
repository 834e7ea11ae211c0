"""
Dispatch table for controller messages.

The registry is built once with build_registry() and handed to every
Connection; handlers never share state except through the connection they
are given.
"""

import asyncio
import logging
from types import MappingProxyType
from typing import TYPE_CHECKING, Awaitable, Callable, Mapping

from .errors import MissingSourceFile, UnknownMessageKind
from .transfer import IncomingTransfer, OutgoingTransfer
from .wire import (
    ControlMessage,
    FileMessage,
    FileReceiveEndMessage,
    FileWaitMessage,
    LaunchModelMessage,
    MessageType,
    RequestFileMessage,
    TerminalResizeMessage,
    WaitReceiveMessage,
)

if TYPE_CHECKING:
    from .connection import Connection

logger = logging.getLogger(__name__)

Handler = Callable[[ControlMessage, "Connection"], Awaitable[None]]
Registry = Mapping[MessageType, Handler]


async def handle_file(message: FileMessage, conn: "Connection"):
    """Controller announces a file it is about to send."""
    if message.file_size == 0:
        logger.debug(f"Empty transfer announced for {message.file_path!r}, nothing to receive")
        return

    transfer = await IncomingTransfer.open(
        conn.storage, message.file_path, message.file_size
    )
    conn.session.begin_transfer(transfer)
    await conn.channel.send(FileWaitMessage())


async def handle_file_receive_end(message: FileReceiveEndMessage, conn: "Connection"):
    logger.debug("Controller acknowledged file receipt")


async def handle_launch_model(message: LaunchModelMessage, conn: "Connection"):
    conn.terminal.spawn(message.script_path)


async def handle_terminal_resize(message: TerminalResizeMessage, conn: "Connection"):
    conn.terminal.resize(message.cols, message.rows)


async def handle_request_file(message: RequestFileMessage, conn: "Connection"):
    """Announce a local file to the controller.

    A missing file is reported as a zero-length transfer rather than an
    error; the controller then never sends WaitReceive for it.
    """
    previous = conn.session.take_outgoing()
    if previous is not None:
        logger.warning(f"Replacing unsent outgoing transfer of {previous.path}")
        await previous.close()

    try:
        source, size = await asyncio.to_thread(
            conn.storage.open_source, message.file_path
        )
    except MissingSourceFile as e:
        logger.info(f"{e}; announcing empty transfer")
        size = 0
    else:
        if size == 0:
            await asyncio.to_thread(conn.storage.close_source, source)
        else:
            conn.session.outgoing = OutgoingTransfer(
                message.file_path, size, source, conn.storage
            )

    await conn.channel.send(FileMessage(file_size=size, file_path=message.file_path))


async def handle_wait_receive(message: WaitReceiveMessage, conn: "Connection"):
    """Controller is ready for the bytes announced by handle_request_file."""
    outgoing = conn.session.take_outgoing()
    if outgoing is None:
        logger.warning("WaitReceive with no pending outgoing transfer")
        return
    await outgoing.stream(conn.channel, conn.config.chunk_size)


def build_registry() -> Registry:
    """Build the immutable kind -> handler table."""
    return MappingProxyType(
        {
            MessageType.FILE: handle_file,
            MessageType.FILE_RECEIVE_END: handle_file_receive_end,
            MessageType.LAUNCH_MODEL: handle_launch_model,
            MessageType.TERMINAL_RESIZE: handle_terminal_resize,
            MessageType.REQUEST_FILE: handle_request_file,
            MessageType.WAIT_RECEIVE: handle_wait_receive,
        }
    )


async def dispatch(
    registry: Registry, message: ControlMessage, conn: "Connection", frame: bytes = b""
):
    handler = registry.get(message.kind)
    if handler is None:
        raise UnknownMessageKind(message.kind.value, frame)
    await handler(message, conn)
