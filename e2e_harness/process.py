"""Child process ownership: spawn, stream output, terminate.

``ManagedProcess`` starts a child in its own process group, pumps stdout and
stderr through line-buffered readers into an in-memory transcript (and the
test's ``LogSink``), and tears the whole group down in two phases.
"""
from __future__ import annotations

import asyncio
import codecs
import logging
import os
import shutil
import signal
import subprocess
import sys
from typing import Callable, Dict, List, Optional, Sequence

from e2e_harness.constants import OUTPUT_DRAIN_TIMEOUT, STOP_GRACE_PERIOD, STOP_KILL_WAIT
from e2e_harness.errors import CleanupError
from e2e_harness.log_sink import LogSink, LogSource
from e2e_harness.readiness import PollTimeout, wait_until

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"
READ_CHUNK_SIZE = 4096

LineListener = Callable[[str, str], None]


class LineBuffer:
    """Incrementally decode bytes and split them into complete lines."""

    def __init__(self, encoding: str = "utf-8"):
        self._decoder = codecs.getincrementaldecoder(encoding)(errors="replace")
        self._pending = ""

    def feed(self, data: bytes) -> List[str]:
        self._pending += self._decoder.decode(data)
        *lines, self._pending = self._pending.split("\n")
        return [line.rstrip("\r") for line in lines]

    def flush(self) -> List[str]:
        self._pending += self._decoder.decode(b"", final=True)
        rest, self._pending = self._pending, ""
        return [rest.rstrip("\r")] if rest else []


def _group_kwargs() -> Dict[str, object]:
    if IS_WINDOWS:
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _resolve_executable(argv: Sequence[str], env: Optional[Dict[str, str]]) -> List[str]:
    program = argv[0]
    if os.path.dirname(program):
        return list(argv)
    search_path = (env or os.environ).get("PATH")
    resolved = shutil.which(program, path=search_path)
    return [resolved or program, *argv[1:]]


class ManagedProcess:
    """A supervised child process with a captured transcript."""

    def __init__(
        self,
        name: str,
        argv: Sequence[str],
        *,
        cwd: Optional[os.PathLike] = None,
        env: Optional[Dict[str, str]] = None,
        log_sink: Optional[LogSink] = None,
        source: LogSource = LogSource.TEST,
    ):
        self.name = name
        self.argv = list(argv)
        self.cwd = cwd
        self.env = env
        self.log_sink = log_sink
        self.source = source
        self.lines: List[str] = []
        self.stderr_lines: List[str] = []
        self._listeners: List[LineListener] = []
        self._proc: Optional[asyncio.subprocess.Process] = None
        self._pumps: List[asyncio.Task] = []
        self._stop_lock = asyncio.Lock()

    # ---- lifecycle ----------------------------------------------------------

    async def start(self) -> "ManagedProcess":
        if self._proc is not None:
            raise RuntimeError(f"{self.name} already started")
        argv = _resolve_executable(self.argv, self.env)
        logger.info(f"Starting {self.name}: {' '.join(argv)}")
        self._proc = await asyncio.create_subprocess_exec(
            *argv,
            cwd=self.cwd,
            env=self.env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            **_group_kwargs(),
        )
        self._pumps = [
            asyncio.create_task(self._pump(self._proc.stdout, "stdout")),
            asyncio.create_task(self._pump(self._proc.stderr, "stderr")),
        ]
        logger.debug(f"{self.name} started with pid {self._proc.pid}")
        return self

    async def _pump(self, stream: asyncio.StreamReader, channel: str) -> None:
        buffer = LineBuffer()
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            for line in buffer.feed(chunk):
                self._record(line, channel)
        for line in buffer.flush():
            self._record(line, channel)

    def _record(self, line: str, channel: str) -> None:
        self.lines.append(line)
        if channel == "stderr":
            self.stderr_lines.append(line)
        if self.log_sink is not None and line.strip():
            self.log_sink.write(line, self.source)
        for listener in list(self._listeners):
            try:
                listener(line, channel)
            except Exception as exc:
                logger.warning(f"{self.name} output listener failed: {exc}")

    def add_listener(self, listener: LineListener) -> None:
        """Call ``listener(line, channel)`` for every line read from now on."""
        self._listeners.append(listener)

    # ---- state --------------------------------------------------------------

    @property
    def pid(self) -> Optional[int]:
        return self._proc.pid if self._proc else None

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc else None

    @property
    def is_running(self) -> bool:
        return self._proc is not None and self._proc.returncode is None

    @property
    def output(self) -> str:
        return "\n".join(self.lines)

    async def wait_output(self, timeout: float = OUTPUT_DRAIN_TIMEOUT) -> None:
        """Give the pumps up to ``timeout`` seconds to read what an exited child wrote."""
        pending = [task for task in self._pumps if not task.done()]
        if pending:
            await asyncio.wait(pending, timeout=timeout)

    async def wait(self, timeout: float) -> bool:
        """Wait up to ``timeout`` seconds for exit. Returns True if exited."""
        if self._proc is None:
            return True
        try:
            await asyncio.wait_for(self._proc.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True

    # ---- teardown -----------------------------------------------------------

    async def stop(self, grace: float = STOP_GRACE_PERIOD) -> None:
        """Terminate the process group. Safe to call repeatedly; never raises."""
        if self._proc is None:
            return
        async with self._stop_lock:
            try:
                await self._terminate(grace)
            except Exception as exc:
                error = CleanupError(self.name, exc)
                logger.warning(str(error))
                if self.log_sink is not None:
                    self.log_sink.write(str(error), LogSource.TEST)
            finally:
                await self._drain_pumps()

    async def _terminate(self, grace: float) -> None:
        if self._is_gone():
            return
        logger.info(f"Stopping {self.name} (pid {self.pid})")
        self._send(force=False)
        if await self._wait_gone(grace):
            return
        logger.warning(f"{self.name} still alive after {grace:g}s, killing")
        self._send(force=True)
        if not await self._wait_gone(STOP_KILL_WAIT):
            raise RuntimeError(f"{self.name} (pid {self.pid}) survived SIGKILL")

    def _group_alive(self) -> bool:
        if IS_WINDOWS or self._proc is None:
            return False
        try:
            os.killpg(self._proc.pid, 0)
        except OSError:
            return False
        return True

    def _is_gone(self) -> bool:
        return self._proc.returncode is not None and not self._group_alive()

    async def _wait_gone(self, timeout: float) -> bool:
        try:
            await wait_until(self._is_gone, timeout=timeout, interval=0.05, description=f"{self.name} exit")
        except PollTimeout:
            return False
        return True

    def _send(self, force: bool) -> None:
        proc = self._proc
        if IS_WINDOWS:
            try:
                if force:
                    proc.kill()
                else:
                    proc.terminate()
            except ProcessLookupError:
                pass
            return

        sig = signal.SIGKILL if force else signal.SIGTERM
        try:
            # start_new_session makes the child its own group leader (pgid == pid)
            os.killpg(proc.pid, sig)
            return
        except ProcessLookupError:
            return
        except OSError as exc:
            logger.debug(f"Group signal to {proc.pid} failed ({exc}), signalling pid directly")
        try:
            proc.send_signal(sig)
        except ProcessLookupError:
            pass

    async def _drain_pumps(self) -> None:
        pending = [task for task in self._pumps if not task.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=OUTPUT_DRAIN_TIMEOUT)
            for task in still_running:
                task.cancel()
        if self._pumps:
            await asyncio.gather(*self._pumps, return_exceptions=True)

    def __repr__(self) -> str:
        return f"ManagedProcess(name={self.name!r}, pid={self.pid}, returncode={self.returncode})"
