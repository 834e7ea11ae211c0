"""Local file storage backing incoming sinks and outgoing sources."""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Tuple

from .errors import MissingSourceFile

logger = logging.getLogger(__name__)


class FileStorage:
    """Sink/source collaborator over the local file system.

    All methods are blocking; callers on the event loop run them through
    asyncio.to_thread.
    """

    def open_sink(self, path: str) -> BinaryIO:
        """Open path for writing, creating parent directories as needed."""
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        logger.debug(f"Opened sink: {path}")
        return open(path, "wb")

    def write(self, handle: BinaryIO, data: bytes):
        handle.write(data)

    def finalize(self, handle: BinaryIO):
        """Flush and close a sink whose payload is complete."""
        try:
            handle.flush()
            os.fsync(handle.fileno())
        finally:
            handle.close()

    def discard(self, handle: BinaryIO):
        """Close a sink whose transfer was abandoned."""
        handle.close()

    def open_source(self, path: str) -> Tuple[BinaryIO, int]:
        """Open path for reading.

        Returns:
            (handle, size_in_bytes)

        Raises:
            MissingSourceFile: if path does not exist or is not a file
        """
        if not os.path.isfile(path):
            raise MissingSourceFile(path)
        size = os.path.getsize(path)
        return open(path, "rb"), size

    def read(self, handle: BinaryIO, size: int) -> bytes:
        return handle.read(size)

    def close_source(self, handle: BinaryIO):
        handle.close()
