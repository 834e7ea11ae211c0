"""
Agent error taxonomy.

Protocol errors are fatal for the connection: once a frame boundary can no
longer be trusted every later frame is suspect. Storage and process errors
are surfaced to the connection owner, except MissingSourceFile which the
RequestFile handler turns into a zero-length transfer.
"""

from typing import Optional


def _preview(data: bytes, limit: int = 200) -> str:
    if len(data) <= limit:
        return repr(data)
    return f"{data[:limit]!r}... ({len(data)} bytes)"


class AgentError(Exception):
    """Base class for all agent errors."""


class ProtocolError(AgentError):
    """The byte stream violated the framing protocol."""


class MalformedFrame(ProtocolError):
    """A complete frame could not be decoded."""

    def __init__(self, frame: bytes, reason: str):
        self.frame = frame
        self.reason = reason
        super().__init__(f"Malformed frame ({reason}): {_preview(frame)}")


class UnknownMessageKind(ProtocolError):
    """A decoded frame names a kind with no registered handler."""

    def __init__(self, kind: Optional[str], frame: bytes = b""):
        self.kind = kind
        self.frame = frame
        super().__init__(f"Unknown message kind {kind!r}: {_preview(frame)}")


class FrameTooLarge(ProtocolError):
    """Undelimited carry grew past the configured frame limit."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(
            f"Undelimited frame of {size} bytes exceeds limit of {limit} bytes"
        )


class SinkWriteFailure(AgentError):
    """Persisting binary payload bytes failed."""

    def __init__(self, path: str, cause: Exception):
        self.path = path
        self.cause = cause
        super().__init__(f"Failed to write {path}: {cause}")


class MissingSourceFile(AgentError):
    """A requested outgoing file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")


class ProcessSpawnFailure(AgentError):
    """The interactive process could not be started."""

    def __init__(self, command, cause: Exception):
        self.command = command
        self.cause = cause
        super().__init__(f"Failed to spawn {command}: {cause}")
