"""
Terminal Bridge

Runs the model script under a pseudo-terminal and relays its output to the
controller. The pty side is exposed as an event queue (OutputChunk events
followed by exactly one ProcessExited) that the bridge drains in its own
task, so output handling never runs inside a raw fd callback.
"""

import asyncio
import codecs
import errno
import fcntl
import logging
import os
import pty
import shutil
import signal
import struct
import termios
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Union

from websockets.exceptions import ConnectionClosed

from .channel import OutboundChannel
from .errors import ProcessSpawnFailure
from .wire import ProcessEndMessage, TerminalMessage

logger = logging.getLogger(__name__)

READ_SIZE = 4096


@dataclass(frozen=True)
class TerminalGeometry:
    cols: int = 181
    rows: int = 14
    term_name: str = "xterm-color"


@dataclass(frozen=True)
class OutputChunk:
    data: bytes


@dataclass(frozen=True)
class ProcessExited:
    exit_code: int


PtyEvent = Union[OutputChunk, ProcessExited]


def _set_winsize(fd: int, cols: int, rows: int):
    winsize = struct.pack("HHHH", rows, cols, 0, 0)
    fcntl.ioctl(fd, termios.TIOCSWINSZ, winsize)


class PtyProcess:
    """A child process attached to a pty master on the running event loop."""

    def __init__(self, pid: int, master_fd: int, loop: asyncio.AbstractEventLoop):
        self.pid = pid
        self.master_fd = master_fd
        self.loop = loop
        self.events: "asyncio.Queue[PtyEvent]" = asyncio.Queue()
        self.exit_code: Optional[int] = None
        self._reading = False
        self._reap_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.exit_code is None

    @classmethod
    def spawn(
        cls,
        command: List[str],
        geometry: TerminalGeometry,
        working_dir: Optional[str] = None,
        environment: Optional[Dict[str, str]] = None,
    ) -> "PtyProcess":
        """Fork command under a new pty with a fixed window size.

        Raises:
            ProcessSpawnFailure: if the program is missing or fork fails
        """
        if shutil.which(command[0]) is None:
            raise ProcessSpawnFailure(command, FileNotFoundError(command[0]))

        env = dict(os.environ if environment is None else environment)
        env["TERM"] = geometry.term_name
        loop = asyncio.get_running_loop()

        try:
            pid, master_fd = pty.fork()
        except OSError as e:
            raise ProcessSpawnFailure(command, e) from e

        if pid == 0:
            # Child process
            try:
                _set_winsize(0, geometry.cols, geometry.rows)
                if working_dir:
                    os.chdir(working_dir)
                os.execvpe(command[0], command, env)
            finally:
                os._exit(127)

        # Parent process
        process = cls(pid, master_fd, loop)
        process._start_reading()
        logger.info(f"Spawned {command} (pid {pid}, {geometry.cols}x{geometry.rows})")
        return process

    def resize(self, cols: int, rows: int):
        if not self.running:
            return
        _set_winsize(self.master_fd, cols, rows)

    def terminate(self):
        """Hang up the child; its exit is still reported through events."""
        if not self.running:
            return
        try:
            os.kill(self.pid, signal.SIGHUP)
        except ProcessLookupError:
            pass

    def _start_reading(self):
        self._reading = True
        self.loop.add_reader(self.master_fd, self._on_readable)

    def _stop_reading(self):
        if self._reading:
            self._reading = False
            self.loop.remove_reader(self.master_fd)

    def _on_readable(self):
        try:
            data = os.read(self.master_fd, READ_SIZE)
        except OSError as e:
            # EIO means the slave side closed
            if e.errno != errno.EIO:
                logger.warning(f"PTY read failed: {e}")
            data = b""

        if data:
            self.events.put_nowait(OutputChunk(data))
            return

        self._stop_reading()
        self._reap_task = self.loop.create_task(self._reap())

    async def _reap(self):
        _, status = await asyncio.to_thread(os.waitpid, self.pid, 0)
        self.exit_code = os.waitstatus_to_exitcode(status)
        os.close(self.master_fd)
        logger.info(f"Process {self.pid} exited with code {self.exit_code}")
        self.events.put_nowait(ProcessExited(self.exit_code))


Spawner = Callable[..., PtyProcess]


class TerminalBridge:
    """Relays one interactive process to the controller."""

    def __init__(
        self,
        channel: OutboundChannel,
        geometry: TerminalGeometry,
        shell: str = "bash",
        working_dir: Optional[str] = None,
        spawner: Spawner = PtyProcess.spawn,
    ):
        self.channel = channel
        self.geometry = geometry
        self.shell = shell
        self.working_dir = working_dir
        self.spawner = spawner
        self.process = None
        self._pump_task: Optional[asyncio.Task] = None
        self._ended = False

    @property
    def running(self) -> bool:
        return self.process is not None and self.process.running

    def spawn(self, script_path: str):
        if self.process is not None:
            logger.warning(f"Interactive process already started, ignoring launch of {script_path}")
            return

        self.process = self.spawner(
            [self.shell, script_path],
            self.geometry,
            self.working_dir or os.environ.get("HOME"),
            dict(os.environ),
        )
        self._pump_task = asyncio.create_task(self._pump(self.process))

    def resize(self, cols: int, rows: int):
        if not self.running:
            logger.debug("Resize requested with no running process")
            return
        self.process.resize(cols, rows)

    async def wait(self):
        """Wait until the process has exited and ProcessEnd was sent."""
        if self._pump_task is not None:
            await self._pump_task

    async def close(self):
        """Signal that the owning connection is gone."""
        if self.process is not None:
            self.process.terminate()
        if self._pump_task is not None and not self._pump_task.done():
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass

    async def _pump(self, process):
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while True:
                event = await process.events.get()
                if isinstance(event, OutputChunk):
                    text = decoder.decode(event.data)
                    if text:
                        await self.channel.send(TerminalMessage(text))
                    continue

                tail = decoder.decode(b"", final=True)
                if tail:
                    await self.channel.send(TerminalMessage(tail))
                await self._send_end()
                return
        except (ConnectionError, ConnectionClosed, OSError) as e:
            logger.warning(f"Stopped relaying terminal output: {e}")

    async def _send_end(self):
        if self._ended:
            return
        self._ended = True
        await self.channel.send(ProcessEndMessage())
