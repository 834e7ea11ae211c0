"""Tests for the transfer coordinator's byte counting."""

import asyncio
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chameleon_agent.channel import OutboundChannel
from chameleon_agent.errors import MalformedFrame
from chameleon_agent.session import BinaryMode, Session, TextMode
from chameleon_agent.storage import FileStorage
from chameleon_agent.transfer import (
    Completed,
    IncomingTransfer,
    InProgress,
    OutgoingTransfer,
)
from chameleon_agent.wire import DELIMITER


def open_transfer(path, size):
    return asyncio.run(IncomingTransfer.open(FileStorage(), str(path), size))


class TestIncomingTransfer:
    def test_open_creates_parent_directories(self, tmp_path):
        dest = tmp_path / "a" / "b" / "c.bin"
        transfer = open_transfer(dest, 3)
        assert dest.parent.is_dir()
        assert transfer.consumed == 0
        assert transfer.remaining == 3
        transfer.sink.close()

    def test_zero_size_rejected(self, tmp_path):
        with pytest.raises(ValueError):
            IncomingTransfer(str(tmp_path / "x"), 0, None, FileStorage())

    @pytest.mark.parametrize(
        "chunks",
        [
            [b"ABCDE\0"],
            [b"AB", b"CDE\0"],
            [b"A", b"B", b"C", b"D", b"E", b"\0"],
            [b"ABCDE", b"\0"],
        ],
    )
    def test_exact_count_regardless_of_chunking(self, tmp_path, chunks):
        dest = tmp_path / "out.bin"

        async def run():
            transfer = await IncomingTransfer.open(FileStorage(), str(dest), 5)
            outcomes = [await transfer.feed(chunk) for chunk in chunks]
            return transfer, outcomes

        transfer, outcomes = asyncio.run(run())

        assert all(isinstance(o, InProgress) for o in outcomes[:-1])
        assert outcomes[-1] == Completed(b"")
        assert transfer.consumed == 5
        assert dest.read_bytes() == b"ABCDE"

    def test_remainder_after_delimiter(self, tmp_path):
        dest = tmp_path / "out.bin"

        async def run():
            transfer = await IncomingTransfer.open(FileStorage(), str(dest), 2)
            return await transfer.feed(b"hi\0\0{\"msg\"")

        assert asyncio.run(run()) == Completed(b'\0{"msg"')
        assert dest.read_bytes() == b"hi"

    def test_sink_finalized_before_delimiter_arrives(self, tmp_path):
        dest = tmp_path / "out.bin"

        async def run():
            transfer = await IncomingTransfer.open(FileStorage(), str(dest), 2)
            outcome = await transfer.feed(b"hi")
            return transfer, outcome

        transfer, outcome = asyncio.run(run())

        assert isinstance(outcome, InProgress)
        assert transfer.awaiting_delimiter
        assert transfer.sink.closed
        assert dest.read_bytes() == b"hi"

    def test_non_delimiter_after_span(self, tmp_path):
        async def run():
            transfer = await IncomingTransfer.open(FileStorage(), str(tmp_path / "x"), 1)
            await transfer.feed(b"a")
            await transfer.feed(b"b")

        with pytest.raises(MalformedFrame):
            asyncio.run(run())

    def test_abort_is_idempotent_and_skips_finalized(self, tmp_path):
        async def run():
            transfer = await IncomingTransfer.open(FileStorage(), str(tmp_path / "x"), 4)
            await transfer.feed(b"ab")
            await transfer.abort()
            await transfer.abort()
            return transfer

        transfer = asyncio.run(run())
        assert transfer.sink.closed
        assert transfer.consumed == 2


class TestSessionModes:
    def test_begin_and_end_transfer(self, tmp_path):
        session = Session()
        transfer = open_transfer(tmp_path / "x", 1)

        session.begin_transfer(transfer)
        assert session.in_binary
        assert session.mode == BinaryMode(transfer)

        assert session.end_transfer() is transfer
        assert isinstance(session.mode, TextMode)
        transfer.sink.close()

    def test_nested_transfer_rejected(self, tmp_path):
        session = Session()
        transfer = open_transfer(tmp_path / "x", 1)
        session.begin_transfer(transfer)
        with pytest.raises(RuntimeError):
            session.begin_transfer(transfer)
        transfer.sink.close()

    def test_end_without_transfer_rejected(self):
        with pytest.raises(RuntimeError):
            Session().end_transfer()

    def test_binary_with_pending_carry_rejected(self, tmp_path):
        session = Session(carry=b'{"msg"')
        transfer = open_transfer(tmp_path / "x", 1)
        with pytest.raises(RuntimeError):
            session.begin_transfer(transfer)
        transfer.sink.close()


class RecordingTransport:
    def __init__(self):
        self.writes = []

    async def write(self, data):
        self.writes.append(data)


class TestOutgoingTransfer:
    def test_stream_writes_payload_then_one_delimiter(self, tmp_path):
        source = tmp_path / "src.bin"
        source.write_bytes(b"0123456789")
        storage = FileStorage()
        transport = RecordingTransport()

        async def run():
            handle, size = storage.open_source(str(source))
            outgoing = OutgoingTransfer(str(source), size, handle, storage)
            await outgoing.stream(OutboundChannel(transport), chunk_size=4)
            return outgoing

        outgoing = asyncio.run(run())

        assert transport.writes == [b"0123", b"4567", b"89", DELIMITER]
        assert outgoing.sent == 10
        assert outgoing.source.closed

    def test_shrunk_source_is_padded(self, tmp_path):
        source = tmp_path / "src.bin"
        source.write_bytes(b"abc")
        storage = FileStorage()
        transport = RecordingTransport()

        async def run():
            handle, _ = storage.open_source(str(source))
            outgoing = OutgoingTransfer(str(source), 5, handle, storage)
            await outgoing.stream(OutboundChannel(transport))

        asyncio.run(run())

        assert b"".join(transport.writes) == b"abc\0\0" + DELIMITER
