"""
Chameleon Agent Wire Module

Hybrid framing for the agent <-> controller connection. A single byte stream
carries NUL-delimited JSON control messages and raw binary spans of
announced length.

Usage:
    from chameleon_agent.wire import split_frames, decode, encode_frame

    frames, carry = split_frames(carry + data)
    for frame in frames:
        message = decode(frame)
"""

from .framing import (
    DELIMITER,
    split_frames,
    join_frames,
    take_binary_span,
    encode_frame,
    decode_frame,
)

from .protocol import (
    KIND_FIELD,
    MessageType,
    ControlMessage,
    FileMessage,
    FileReceiveEndMessage,
    LaunchModelMessage,
    TerminalResizeMessage,
    RequestFileMessage,
    WaitReceiveMessage,
    ExecutionData,
    LaunchMessage,
    FileWaitMessage,
    TerminalMessage,
    ProcessEndMessage,
    parse_message,
    decode,
)

__all__ = [
    # Framing
    "DELIMITER",
    "split_frames",
    "join_frames",
    "take_binary_span",
    "encode_frame",
    "decode_frame",
    # Message types
    "KIND_FIELD",
    "MessageType",
    "ControlMessage",
    "FileMessage",
    "FileReceiveEndMessage",
    "LaunchModelMessage",
    "TerminalResizeMessage",
    "RequestFileMessage",
    "WaitReceiveMessage",
    "ExecutionData",
    "LaunchMessage",
    "FileWaitMessage",
    "TerminalMessage",
    "ProcessEndMessage",
    # Decoding
    "parse_message",
    "decode",
]
