"""Frontend dev-server supervision.

The dev server is told where the backend lives through ``BACKEND_PORT`` and
picks its own port. When the default port is taken (parallel workers) it moves
to the next free one, so the bound port is read back from its banner::

    ➜  Local:   http://localhost:3007/
"""
from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from typing import Optional

import anyio
import httpx

from e2e_harness import constants
from e2e_harness.config import HarnessSettings
from e2e_harness.errors import PortNotDetected, ReadinessTimeout, StartupTimeout
from e2e_harness.log_sink import LogSink, LogSource
from e2e_harness.process import ManagedProcess
from e2e_harness.readiness import PollTimeout, wait_for_http, wait_until

logger = logging.getLogger(__name__)

ANSI_ESCAPE = re.compile(r"\x1b\[[0-9;?]*[A-Za-z]")
LOCAL_URL = re.compile(r"Local:\s+http://localhost:(\d+)")


def strip_ansi(text: str) -> str:
    return ANSI_ESCAPE.sub("", text)


def extract_port(text: str) -> Optional[int]:
    match = LOCAL_URL.search(strip_ansi(text))
    return int(match.group(1)) if match else None


@dataclass
class FrontendInstance:
    process: ManagedProcess
    port: int
    url: str
    backend_port: int

    def page_url(self, path: str) -> str:
        return HarnessSettings.url(self.url, path)


class FrontendMonitor:
    """Watches dev-server output for the ready marker and the bound port."""

    def __init__(self, ready_markers, log_sink: Optional[LogSink] = None):
        self.ready_markers = tuple(ready_markers)
        self.log_sink = log_sink
        self.port: Optional[int] = None
        self.ready = False

    def __call__(self, line: str, channel: str) -> None:
        if channel != "stdout":
            return
        clean = strip_ansi(line)
        if self.port is None:
            port = extract_port(clean)
            if port is not None:
                self.port = port
                if self.log_sink is not None:
                    self.log_sink.test(f"Detected frontend port: {port}")
        if not self.ready and any(marker in clean for marker in self.ready_markers):
            self.ready = True


class FrontendSupervisor:
    """Spawns the dev server for one backend and waits until it serves pages."""

    def __init__(
        self,
        settings: HarnessSettings,
        log_sink: LogSink,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.log_sink = log_sink
        self.transport = transport
        self.start_timeout = constants.FRONTEND_START_TIMEOUT
        self.accessible_timeout = constants.FRONTEND_ACCESSIBLE_TIMEOUT
        self.settle_delay = constants.FRONTEND_HYDRATION_SETTLE

    def build_env(self, backend_port: int) -> dict:
        env = dict(os.environ)
        env.update(self.settings.frontend_env)
        env["BACKEND_PORT"] = str(backend_port)
        return env

    async def spawn(self, backend_port: int) -> FrontendInstance:
        self.log_sink.frontend(f"Starting dev server for backend port {backend_port}")
        process = ManagedProcess(
            "frontend",
            self.settings.frontend_command,
            cwd=self.settings.frontend_dir,
            env=self.build_env(backend_port),
            log_sink=self.log_sink,
            source=LogSource.FRONTEND,
        )
        monitor = FrontendMonitor(self.settings.ready_markers, self.log_sink)
        process.add_listener(monitor)
        try:
            await process.start()
        except OSError as exc:
            raise StartupTimeout(
                "Frontend", 0, detail=f"failed to launch {self.settings.frontend_command[0]}: {exc}"
            ) from exc

        try:
            port = await self._await_start(process, monitor)
            url = f"http://localhost:{port}"
            await self._await_accessible(url)
            # let client-side hydration finish before a browser touches the page
            await anyio.sleep(self.settle_delay)
        except BaseException as exc:
            self.log_sink.frontend(f"ERROR: Frontend startup failed: {exc}")
            await process.stop()
            raise

        self.log_sink.frontend(f"Frontend ready at {url}")
        return FrontendInstance(process=process, port=port, url=url, backend_port=backend_port)

    async def _await_start(self, process: ManagedProcess, monitor: FrontendMonitor) -> int:
        timeout = self.start_timeout

        async def exited_check() -> None:
            if not process.is_running:
                await process.wait_output()
                raise StartupTimeout(
                    "Frontend",
                    timeout,
                    process.output,
                    detail=f"process exited with code {process.returncode}",
                )

        async def ready() -> bool:
            if monitor.ready:
                return True
            await exited_check()
            return monitor.ready

        async def port_found() -> Optional[int]:
            if monitor.port is not None:
                return monitor.port
            await exited_check()
            return monitor.port

        try:
            await wait_until(
                ready,
                timeout=timeout,
                interval=constants.FRONTEND_START_INTERVAL,
                description="dev server ready marker",
            )
        except PollTimeout:
            stderr = "\n".join(process.stderr_lines)
            raise StartupTimeout(
                "Frontend", timeout, stderr or process.output, detail="dev server did not report ready"
            ) from None

        try:
            return await wait_until(
                port_found,
                timeout=timeout,
                interval=constants.FRONTEND_START_INTERVAL,
                description="dev server port",
            )
        except PollTimeout:
            raise PortNotDetected(timeout, process.output) from None

    async def _await_accessible(self, url: str) -> None:
        self.log_sink.test(f"Checking frontend accessibility at {url}")
        try:
            await wait_for_http(
                url,
                timeout=self.accessible_timeout,
                interval=constants.FRONTEND_ACCESSIBLE_INTERVAL,
                require_ok=False,
                transport=self.transport,
            )
        except PollTimeout as exc:
            raise ReadinessTimeout("Frontend", url, self.accessible_timeout, exc.last_error) from None
        self.log_sink.test(f"Frontend server accessible at {url}")

    async def stop(self, instance: Optional[FrontendInstance]) -> None:
        if instance is None:
            return
        self.log_sink.frontend("Stopping dev server")
        await instance.process.stop()
