"""Agent configuration: config.json next to the executable, then env, then argv."""

import json
import logging
import os
import sys
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

from .terminal import TerminalGeometry
from .wire import ExecutionData

logger = logging.getLogger(__name__)

CONFIG_FILENAME = "config.json"

# camelCase keys written by the controller platform
_KEY_ALIASES = {
    "historyId": "history_id",
    "modelPath": "model_path",
    "termName": "term_name",
    "readSize": "read_size",
    "chunkSize": "chunk_size",
    "maxFrameSize": "max_frame_size",
    "workingDir": "working_dir",
}

_ENV_OVERRIDES = {
    "CHAMELEON_HOST": ("host", str),
    "CHAMELEON_PORT": ("port", int),
    "CHAMELEON_TRANSPORT": ("transport", str),
    "CHAMELEON_HISTORY_ID": ("history_id", int),
}

TRANSPORTS = ("tcp", "ws")

_COMMAND_LINE_ONLY = {"is_main_connection", "execution_data"}


@dataclass(frozen=True)
class AgentConfig:
    host: Optional[str] = None
    port: Optional[int] = None
    history_id: Optional[int] = None
    model_path: Optional[str] = None

    # Set from the command line, never read from config.json
    is_main_connection: Optional[bool] = None
    execution_data: Optional[ExecutionData] = None

    transport: str = "tcp"
    path: str = "/"  # URL path for the ws transport

    # Geometry is bound at spawn time and never renegotiated automatically
    shell: str = "bash"
    term_name: str = "xterm-color"
    cols: int = 181
    rows: int = 14
    working_dir: Optional[str] = None

    read_size: int = 64 * 1024
    chunk_size: int = 64 * 1024
    max_frame_size: int = 64 * 1024 * 1024

    @property
    def geometry(self) -> TerminalGeometry:
        return TerminalGeometry(cols=self.cols, rows=self.rows, term_name=self.term_name)

    @property
    def url(self) -> str:
        return f"ws://{self.host}:{self.port}{self.path}"

    def validate(self):
        if not self.host or self.port is None:
            raise ValueError("host and port are required")
        if self.transport not in TRANSPORTS:
            raise ValueError(f"transport must be one of {TRANSPORTS}, got {self.transport!r}")
        for name in ("read_size", "chunk_size", "max_frame_size", "cols", "rows"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")

    def merged(self, **overrides: Any) -> "AgentConfig":
        """Return a copy with every non-None override applied."""
        return replace(self, **{k: v for k, v in overrides.items() if v is not None})


def default_config_path() -> Path:
    """config.json beside the running executable."""
    return Path(sys.executable).resolve().parent / CONFIG_FILENAME


def config_from_dict(data: Dict[str, Any]) -> AgentConfig:
    known = {f.name for f in fields(AgentConfig)} - _COMMAND_LINE_ONLY
    values = {}
    for key, value in data.items():
        key = _KEY_ALIASES.get(key, key)
        if key in known:
            values[key] = value
        else:
            logger.debug(f"Ignoring unknown config key: {key}")
    return AgentConfig(**values)


def load_config(path: Path) -> AgentConfig:
    """Load a JSON config file.

    Raises:
        FileNotFoundError: if path does not exist
        ValueError: if the file is not a JSON object
    """
    with open(path, "r") as f:
        data = json.load(f)
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a JSON object")
    logger.debug(f"Loaded config from {path}")
    return config_from_dict(data)


def apply_env(config: AgentConfig, environ: Optional[Dict[str, str]] = None) -> AgentConfig:
    environ = os.environ if environ is None else environ
    overrides = {}
    for var, (key, cast) in _ENV_OVERRIDES.items():
        if var in environ:
            overrides[key] = cast(environ[var])
    return config.merged(**overrides)
