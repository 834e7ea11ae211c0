"""
Per-connection session state.

The parsing mode is a tagged variant: TextMode carries nothing, BinaryMode
carries the active IncomingTransfer. Transfer bookkeeping is therefore only
reachable while the session is actually in binary mode.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional, Union

if TYPE_CHECKING:
    from .transfer import IncomingTransfer, OutgoingTransfer

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextMode:
    """Incoming bytes are delimited control frames."""


@dataclass(frozen=True)
class BinaryMode:
    """Incoming bytes belong to the active transfer."""

    transfer: "IncomingTransfer"


Mode = Union[TextMode, BinaryMode]

TEXT = TextMode()


@dataclass
class Session:
    """Mutable state for one open connection."""

    mode: Mode = TEXT
    carry: bytes = b""
    outgoing: Optional["OutgoingTransfer"] = None
    frames_dispatched: int = 0
    bytes_received: int = field(default=0, repr=False)

    @property
    def in_binary(self) -> bool:
        return isinstance(self.mode, BinaryMode)

    def begin_transfer(self, transfer: "IncomingTransfer"):
        """Flip TEXT -> BINARY for an announced transfer."""
        if self.in_binary:
            raise RuntimeError("A binary transfer is already in progress")
        if self.carry:
            # Frames before the announcement were already dispatched, so any
            # carry at this point would be bytes we are about to misread.
            raise RuntimeError("Cannot enter binary mode with pending carry")
        self.mode = BinaryMode(transfer)
        logger.debug(f"Session entered binary mode ({transfer.declared_size} bytes)")

    def end_transfer(self) -> "IncomingTransfer":
        """Flip BINARY -> TEXT once the transfer has completed."""
        if not isinstance(self.mode, BinaryMode):
            raise RuntimeError("No binary transfer in progress")
        transfer = self.mode.transfer
        self.mode = TEXT
        logger.debug("Session returned to text mode")
        return transfer

    def take_outgoing(self) -> Optional["OutgoingTransfer"]:
        outgoing, self.outgoing = self.outgoing, None
        return outgoing
