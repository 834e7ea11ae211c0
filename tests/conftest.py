import sys
from pathlib import Path
from types import MappingProxyType

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from chameleon_agent.channel import Transport
from chameleon_agent.config import AgentConfig
from chameleon_agent.connection import Connection
from chameleon_agent.handlers import build_registry


class FakeTransport(Transport):
    """Transport that replays scripted chunks and records every write."""

    def __init__(self, chunks=()):
        self.chunks = list(chunks)
        self.written = bytearray()
        self.writes = []
        self.closed = False

    async def read(self) -> bytes:
        if self.chunks:
            return self.chunks.pop(0)
        return b""

    async def write(self, data: bytes):
        self.written += data
        self.writes.append(bytes(data))

    async def close(self):
        self.closed = True


class FakeTerminal:
    """Stands in for TerminalBridge in dispatch tests."""

    def __init__(self):
        self.spawned = []
        self.resizes = []
        self.closed = False

    def spawn(self, script_path):
        self.spawned.append(script_path)

    def resize(self, cols, rows):
        self.resizes.append((cols, rows))

    async def close(self):
        self.closed = True


def recording_registry(log):
    """The real registry, wrapped so every dispatched message is logged."""

    def wrap(handler):
        async def recorder(message, conn):
            log.append(message)
            await handler(message, conn)

        return recorder

    return MappingProxyType({kind: wrap(h) for kind, h in build_registry().items()})


@pytest.fixture
def make_connection():
    def factory(chunks=(), storage=None, **config_values):
        config_values.setdefault("host", "127.0.0.1")
        config_values.setdefault("port", 9000)
        dispatched = []
        conn = Connection(
            FakeTransport(chunks),
            recording_registry(dispatched),
            AgentConfig(**config_values),
            storage=storage,
            terminal=FakeTerminal(),
        )
        conn.dispatched = dispatched
        return conn

    return factory
