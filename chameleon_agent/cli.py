import argparse
import asyncio
import errno
import logging
import os
import sys
from pathlib import Path
from typing import List

from .channel import StreamTransport, WebSocketTransport
from .config import AgentConfig, apply_env, default_config_path, load_config
from .connection import Connection
from .errors import AgentError, ProtocolError
from .handlers import build_registry
from .wire import ExecutionData

logger = logging.getLogger("chameleon_agent")

USAGE_HINT = (
    'Use "chameleon-agent HOST PORT HISTORY_ID", or with a config.json next to '
    'the executable "chameleon-agent MODEL_NAME_ID", '
    '"chameleon-agent MODEL_NAME_ID PARAMETERS_PATH OUTPUT_PATH" or '
    '"chameleon-agent MODEL_NAME_ID INPUT_PATH PARAMETERS_PATH OUTPUT_PATH"'
)

# Stands in for the input of a request that was started without one
EMPTY_INPUT_NAME = "empty"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Chameleon controller agent")
    parser.add_argument(
        "arguments",
        nargs="*",
        metavar="ARG",
        help="HOST PORT HISTORY_ID, or MODEL_NAME_ID [[INPUT_PATH] PARAMETERS_PATH OUTPUT_PATH]",
    )
    parser.add_argument("--config", type=Path, help="Path to config.json")
    parser.add_argument("--transport", choices=["tcp", "ws"], help="Connection transport")
    parser.add_argument("--model-path", type=str, help="Model path announced on connect")
    parser.add_argument(
        "--log-level",
        type=str,
        default=os.environ.get("CHAMELEON_LOG_LEVEL", "INFO"),
        help="Logging level (default: INFO)",
    )
    return parser


def parse_connection_target(arguments: List[str]) -> dict:
    """HOST PORT HISTORY_ID, given by the platform when it starts the agent."""
    host, port, history_id = arguments
    try:
        return {"host": host, "port": int(port), "history_id": int(history_id)}
    except ValueError:
        raise ValueError(
            f"PORT and HISTORY_ID must be integers, got {port!r} and {history_id!r}"
        ) from None


def parse_execution_request(arguments: List[str], base_dir: Path) -> ExecutionData:
    """MODEL_NAME_ID [[INPUT_PATH] PARAMETERS_PATH OUTPUT_PATH]

    MODEL_NAME_ID is "username/uniqueName". Without INPUT_PATH an empty
    placeholder file in base_dir is announced as the input.

    Raises:
        ValueError: if the arguments do not form a request
        FileNotFoundError: if a referenced file does not exist
    """
    name_id, *paths = arguments
    username, _, unique_name = name_id.partition("/")
    if not username or not unique_name:
        raise ValueError(f"MODEL_NAME_ID must look like username/uniqueName, got {name_id!r}")

    if not paths:
        return ExecutionData(username=username, unique_name=unique_name)

    if len(paths) == 3:
        input_path, parameters_path, output_path = paths
        required = (input_path, parameters_path)
    elif len(paths) == 2:
        input_path = None
        parameters_path, output_path = paths
        required = (parameters_path, output_path)
    else:
        raise ValueError(f"Unexpected number of arguments: {len(arguments)}")

    for path in required:
        if not os.path.exists(path):
            raise FileNotFoundError(errno.ENOENT, "The file does not exist at path", path)

    if input_path is None:
        placeholder = base_dir / EMPTY_INPUT_NAME
        placeholder.write_bytes(b"")
        input_path = str(placeholder)

    return ExecutionData(
        username=username,
        unique_name=unique_name,
        input_path=input_path,
        parameters_path=parameters_path,
        output_path=output_path,
    )


def resolve_config(args: argparse.Namespace) -> AgentConfig:
    """Combine config file, environment and positional arguments.

    Without a config file three arguments name the controller directly and
    the connection is the platform's main one. With a config file the
    arguments are an execution request sent over a secondary connection.

    Raises:
        FileNotFoundError: if an explicitly given config file, or a file the
            execution request references, is missing
        ValueError: if the config or the arguments are invalid
    """
    path = args.config if args.config is not None else default_config_path()
    config_exists = path.exists()
    if args.config is not None and not config_exists:
        raise FileNotFoundError(errno.ENOENT, "Config file not found", str(path))

    overrides = {}
    execution_data = None
    if not config_exists and len(args.arguments) == 3:
        overrides = parse_connection_target(args.arguments)
    elif args.arguments:
        if not config_exists:
            raise FileNotFoundError(
                errno.ENOENT, "An execution request needs a config file", str(path)
            )
        execution_data = parse_execution_request(args.arguments, path.parent)

    config = load_config(path) if config_exists else AgentConfig()
    config = apply_env(config)
    return config.merged(
        transport=args.transport,
        model_path=args.model_path,
        is_main_connection=not config_exists,
        execution_data=execution_data,
        **overrides,
    )


async def serve(config: AgentConfig):
    if config.transport == "ws":
        transport = await WebSocketTransport.connect(config.url)
    else:
        transport = await StreamTransport.connect(config.host, config.port, config.read_size)

    connection = Connection(transport, build_registry(), config)
    await connection.run()


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    level = logging.getLevelName(args.log_level.upper())
    if not isinstance(level, int):
        print(f"Invalid log level: {args.log_level}", file=sys.stderr)
        return 1

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        config = resolve_config(args)
    except FileNotFoundError as e:
        print(f"{e.strerror}: {e.filename}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"{e}\n{USAGE_HINT}", file=sys.stderr)
        return 1

    try:
        config.validate()
    except ValueError as e:
        print(f"{e}\n{USAGE_HINT}", file=sys.stderr)
        return 1

    if config.model_path and not os.path.exists(config.model_path):
        print(f"The file does not exist at path: {config.model_path}", file=sys.stderr)
        return 1

    try:
        asyncio.run(serve(config))
    except ProtocolError as e:
        logger.error(f"Fatal protocol error, aborting: {e}")
        return 1
    except AgentError as e:
        logger.error(f"Agent failure: {e}")
        return 1
    except OSError as e:
        logger.error(f"Connection failed: {e}")
        return 1
    except KeyboardInterrupt:
        logger.info("Agent interrupted")
    return 0


if __name__ == "__main__":
    sys.exit(main())
