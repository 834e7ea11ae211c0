"""
Agent Protocol Definitions

This module defines the control messages exchanged between the agent and the
controller. Every message is a JSON object whose "msg" field names its kind.

Protocol Flow (controller -> agent file transfer):
1. Controller sends File with filePath and fileSize
2. Agent opens the destination and replies FileWait
3. Controller sends fileSize raw bytes followed by one delimiter
4. Agent replies FileReceiveEnd

Protocol Flow (agent -> controller file transfer):
1. Controller sends RequestFile with filePath
2. Agent replies File with the file's size (0 if it does not exist)
3. Controller sends WaitReceive
4. Agent sends the raw bytes followed by one delimiter
5. Controller replies FileReceiveEnd
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Union

from ..errors import MalformedFrame, UnknownMessageKind
from .framing import decode_frame

KIND_FIELD = "msg"


class MessageType(str, Enum):
    """Control message kinds."""

    # Both directions
    FILE = "File"  # Announce a binary transfer
    FILE_RECEIVE_END = "FileReceiveEnd"  # Binary transfer fully received

    # Controller -> agent
    LAUNCH_MODEL = "LaunchModel"  # Spawn the interactive process
    TERMINAL_RESIZE = "TerminalResize"  # Resize the interactive process
    REQUEST_FILE = "RequestFile"  # Ask the agent to send a file
    WAIT_RECEIVE = "WaitReceive"  # Controller is ready for the announced bytes

    # Agent -> controller
    LAUNCH = "Launch"  # Hello sent once the connection is up
    FILE_WAIT = "FileWait"  # Agent is ready for the announced bytes
    TERMINAL = "Terminal"  # Interactive process output
    PROCESS_END = "ProcessEnd"  # Interactive process exited


def _require(data: Dict[str, Any], key: str, kind: type, frame: bytes) -> Any:
    if key not in data:
        raise MalformedFrame(frame, f"missing field {key!r}")
    value = data[key]
    # bool is an int subclass but never a valid size or dimension
    if not isinstance(value, kind) or (kind is int and isinstance(value, bool)):
        raise MalformedFrame(
            frame, f"field {key!r} must be {kind.__name__}, got {value!r}"
        )
    return value


def _require_size(data: Dict[str, Any], key: str, frame: bytes) -> int:
    value = _require(data, key, int, frame)
    if value < 0:
        raise MalformedFrame(frame, f"field {key!r} must be non-negative")
    return value


@dataclass(frozen=True)
class FileMessage:
    """Announcement of a binary transfer.

    A size of 0 is a no-op announcement; no binary span follows it.
    """

    file_size: int
    file_path: str = ""

    kind = MessageType.FILE

    def to_dict(self) -> Dict[str, Any]:
        return {
            KIND_FIELD: self.kind.value,
            "filePath": self.file_path,
            "fileSize": self.file_size,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b"") -> "FileMessage":
        file_size = _require_size(data, "fileSize", frame)
        if file_size == 0:
            file_path = data.get("filePath") or ""
        else:
            file_path = _require(data, "filePath", str, frame)
        return cls(file_size=file_size, file_path=file_path)


@dataclass(frozen=True)
class FileReceiveEndMessage:
    kind = MessageType.FILE_RECEIVE_END

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b""):
        return cls()


@dataclass(frozen=True)
class LaunchModelMessage:
    """Request to start the interactive process running script_path."""

    script_path: str

    kind = MessageType.LAUNCH_MODEL

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value, "scriptPath": self.script_path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b""):
        return cls(script_path=_require(data, "scriptPath", str, frame))


@dataclass(frozen=True)
class TerminalResizeMessage:
    cols: int
    rows: int

    kind = MessageType.TERMINAL_RESIZE

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value, "cols": self.cols, "rows": self.rows}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b""):
        return cls(
            cols=_require_size(data, "cols", frame),
            rows=_require_size(data, "rows", frame),
        )


@dataclass(frozen=True)
class RequestFileMessage:
    file_path: str

    kind = MessageType.REQUEST_FILE

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value, "filePath": self.file_path}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b""):
        return cls(file_path=_require(data, "filePath", str, frame))


@dataclass(frozen=True)
class WaitReceiveMessage:
    kind = MessageType.WAIT_RECEIVE

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value}

    @classmethod
    def from_dict(cls, data: Dict[str, Any], frame: bytes = b""):
        return cls()


@dataclass(frozen=True)
class ExecutionData:
    """A user's request to run a model, given on the command line.

    The paths are only present when the request carries input; unset paths
    are left out of the payload.
    """

    username: str
    unique_name: str
    input_path: Optional[str] = None
    parameters_path: Optional[str] = None
    output_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "username": self.username,
            "uniqueName": self.unique_name,
        }
        for key, value in (
            ("inputPath", self.input_path),
            ("parametersPath", self.parameters_path),
            ("outputPath", self.output_path),
        ):
            if value is not None:
                result[key] = value
        return result


@dataclass(frozen=True)
class LaunchMessage:
    """Hello sent by the agent right after connecting."""

    history_id: Optional[int] = None
    model_path: Optional[str] = None
    is_main_connection: Optional[bool] = None
    execution_data: Optional[ExecutionData] = None

    kind = MessageType.LAUNCH

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {KIND_FIELD: self.kind.value}
        if self.history_id is not None:
            result["historyId"] = self.history_id
        if self.model_path is not None:
            result["modelPath"] = self.model_path
        if self.is_main_connection is not None:
            result["isMainConnection"] = self.is_main_connection
        if self.execution_data is not None:
            result["executionData"] = self.execution_data.to_dict()
        return result


@dataclass(frozen=True)
class FileWaitMessage:
    kind = MessageType.FILE_WAIT

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value}


@dataclass(frozen=True)
class TerminalMessage:
    data: str

    kind = MessageType.TERMINAL

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value, "data": self.data}


@dataclass(frozen=True)
class ProcessEndMessage:
    kind = MessageType.PROCESS_END

    def to_dict(self) -> Dict[str, Any]:
        return {KIND_FIELD: self.kind.value}


ControlMessage = Union[
    FileMessage,
    FileReceiveEndMessage,
    LaunchModelMessage,
    TerminalResizeMessage,
    RequestFileMessage,
    WaitReceiveMessage,
    LaunchMessage,
    FileWaitMessage,
    TerminalMessage,
    ProcessEndMessage,
]

# Kinds the agent knows how to parse when they arrive from the controller
INBOUND_TYPES = {
    MessageType.FILE: FileMessage,
    MessageType.FILE_RECEIVE_END: FileReceiveEndMessage,
    MessageType.LAUNCH_MODEL: LaunchModelMessage,
    MessageType.TERMINAL_RESIZE: TerminalResizeMessage,
    MessageType.REQUEST_FILE: RequestFileMessage,
    MessageType.WAIT_RECEIVE: WaitReceiveMessage,
}


def parse_message(data: Dict[str, Any], frame: bytes = b"") -> ControlMessage:
    """Build a typed message from a decoded frame.

    Raises:
        UnknownMessageKind: if "msg" is missing or not an inbound kind
        MalformedFrame: if a required field is missing or mistyped
    """
    raw_kind = data.get(KIND_FIELD)
    try:
        kind = MessageType(raw_kind)
    except ValueError:
        raise UnknownMessageKind(raw_kind, frame) from None

    message_cls = INBOUND_TYPES.get(kind)
    if message_cls is None:
        raise UnknownMessageKind(raw_kind, frame)
    return message_cls.from_dict(data, frame)


def decode(frame: bytes) -> ControlMessage:
    """Decode one delimited frame into a control message."""
    return parse_message(decode_frame(frame), frame)
