"""
Chameleon Agent

Connects to a controller and serves one duplex connection that carries both
NUL-delimited JSON control messages and raw file payloads.

Usage:
    from chameleon_agent import AgentConfig, Connection, build_registry

    connection = Connection(transport, build_registry(), AgentConfig(...))
    await connection.run()
"""

from .config import AgentConfig, load_config
from .connection import Connection
from .handlers import build_registry
from .session import Session

__all__ = [
    "AgentConfig",
    "Connection",
    "Session",
    "build_registry",
    "load_config",
]
