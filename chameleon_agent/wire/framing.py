"""
Frame Codec

Pure functions for segmenting the agent byte stream.

Wire Format:
Control messages are compact JSON objects encoded as UTF-8 and terminated by
a single NUL byte. NUL never appears inside JSON text (control characters in
strings are always escaped), so it is safe as a delimiter.

Binary spans carry exactly the announced number of bytes followed by one
NUL byte, which is a framing artifact and not part of the payload.
"""

import json
from typing import Any, Dict, List, Sequence, Tuple

from ..errors import MalformedFrame

DELIMITER = b"\0"


def split_frames(buffer: bytes) -> Tuple[List[bytes], bytes]:
    """Split a buffer into delimited frames and an undelimited remainder.

    Empty spans between consecutive delimiters are returned as empty frames
    so that join_frames(*split_frames(buf)) == buf for every buffer.

    Args:
        buffer: Raw bytes, typically carry + freshly read bytes

    Returns:
        (frames, remainder) where no frame contains the delimiter and the
        remainder is the trailing span with no following delimiter
    """
    parts = buffer.split(DELIMITER)
    return parts[:-1], parts[-1]


def join_frames(frames: Sequence[bytes], remainder: bytes = b"") -> bytes:
    """Inverse of split_frames."""
    return b"".join(frame + DELIMITER for frame in frames) + remainder


def take_binary_span(buffer: bytes, need: int) -> Tuple[bytes, bytes]:
    """Split off the first min(need, len(buffer)) bytes."""
    if need < 0:
        raise ValueError(f"need must be non-negative, got {need}")
    return buffer[:need], buffer[need:]


def encode_frame(payload: Dict[str, Any]) -> bytes:
    """Encode a message dict as one delimited frame."""
    return (
        json.dumps(payload, separators=(",", ":")).encode("utf-8") + DELIMITER
    )


def decode_frame(frame: bytes) -> Dict[str, Any]:
    """Decode one isolated frame (without its delimiter) into a dict.

    Must only be called on a frame produced by split_frames, never on a
    remainder that may still be incomplete.

    Raises:
        MalformedFrame: if the bytes are not a UTF-8 JSON object
    """
    try:
        text = frame.decode("utf-8")
    except UnicodeDecodeError as e:
        raise MalformedFrame(frame, f"invalid UTF-8: {e}") from e

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise MalformedFrame(frame, f"invalid JSON: {e}") from e

    if not isinstance(data, dict):
        raise MalformedFrame(frame, f"expected object, got {type(data).__name__}")

    return data
