"""Backend test-server supervision.

The backend binary binds a random port and announces itself on stdout with a
single JSON object, e.g.::

    2024-01-01T00:00:00Z INFO {"address":"http://127.0.0.1:5555","port":5555,"test_name":"e2e-x"}

The announcement may be preceded by arbitrary logger output on the same line.
After parsing it the supervisor polls the health check until the server
answers.
"""
from __future__ import annotations

import json
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Iterable, Optional

import anyio
import httpx

from e2e_harness import constants
from e2e_harness.binary import BinaryProvisioner
from e2e_harness.config import HarnessSettings
from e2e_harness.errors import ReadinessTimeout, StartupTimeout
from e2e_harness.log_sink import LogSink, LogSource
from e2e_harness.process import ManagedProcess
from e2e_harness.readiness import PollTimeout, wait_for_http, wait_until

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class ServiceAnnouncement:
    address: str
    port: int
    test_name: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None
    user_id: Optional[str] = None


@dataclass
class BackendInstance:
    port: int
    address: str
    test_name: str
    process: ManagedProcess
    username: Optional[str] = None
    password: Optional[str] = None
    user_id: Optional[str] = None

    def url(self, path: str) -> str:
        return HarnessSettings.url(self.address, path)


def parse_announcement(line: str) -> Optional[ServiceAnnouncement]:
    """Extract a service announcement from one line of output, if present."""
    if '"address"' not in line or '"port"' not in line:
        return None
    for match in re.finditer(r"\{", line):
        try:
            data, _ = _decoder.raw_decode(line, match.start())
        except json.JSONDecodeError:
            continue
        if not isinstance(data, dict) or "address" not in data or "port" not in data:
            continue
        try:
            port = int(data["port"])
        except (TypeError, ValueError):
            continue
        user_id = data.get("user_id")
        return ServiceAnnouncement(
            address=str(data["address"]).rstrip("/"),
            port=port,
            test_name=data.get("test_name"),
            username=data.get("username"),
            password=data.get("password"),
            user_id=str(user_id) if user_id is not None else None,
        )
    return None


def find_announcement(lines: Iterable[str]) -> Optional[ServiceAnnouncement]:
    for line in lines:
        announcement = parse_announcement(line.strip())
        if announcement is not None:
            return announcement
    return None


def backend_test_name(title: str) -> str:
    """Per-test database namespace: ``e2e-<slug>-<millis>``."""
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")[:60] or "test"
    return f"e2e-{slug}-{int(time.time() * 1000)}"


class BackendSupervisor:
    """Spawns one backend per test and waits until it is healthy."""

    def __init__(
        self,
        settings: HarnessSettings,
        log_sink: LogSink,
        binaries: Optional[BinaryProvisioner] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.settings = settings
        self.log_sink = log_sink
        self.binaries = binaries or BinaryProvisioner(
            settings.backend_binary, settings.build_command, log_sink=log_sink
        )
        self.transport = transport
        self.announce_timeout = constants.BACKEND_ANNOUNCE_TIMEOUT
        self.ready_timeout = constants.BACKEND_READY_TIMEOUT

    def build_env(self, test_name: str) -> dict:
        env = dict(os.environ)
        env.update(self.settings.backend_env)
        env.update(
            {
                "TEST_NAME": test_name,
                # users are created through the API by UserProvisioner only
                "CREATE_USER": "false",
                "TEST_LOG": "1",
            }
        )
        return env

    async def spawn(self, test_name: str) -> BackendInstance:
        root = self.settings.project_root
        self.log_sink.backend(f"Starting test app spawn: testName={test_name}")
        binary = await anyio.to_thread.run_sync(self.binaries.ensure_binary, root)

        process = ManagedProcess(
            "backend",
            [str(binary)],
            cwd=root,
            env=self.build_env(test_name),
            log_sink=self.log_sink,
            source=LogSource.BACKEND,
        )
        try:
            await process.start()
        except OSError as exc:
            raise StartupTimeout("Backend", 0, detail=f"failed to launch {binary}: {exc}") from exc

        try:
            announcement = await self._await_announcement(process)
            self.log_sink.backend(
                f"Test server started: port={announcement.port}, address={announcement.address}"
            )
            await self._await_health(announcement)
        except BaseException as exc:
            self.log_sink.backend(f"ERROR: Backend server startup failed: {exc}")
            await process.stop()
            raise

        self.log_sink.backend("Backend is ready")
        return BackendInstance(
            port=announcement.port,
            address=announcement.address,
            test_name=announcement.test_name or test_name,
            process=process,
            username=announcement.username,
            password=announcement.password,
            user_id=announcement.user_id,
        )

    async def _await_announcement(self, process: ManagedProcess) -> ServiceAnnouncement:
        timeout = self.announce_timeout
        scanned = 0
        last_progress = 0

        def scan() -> Optional[ServiceAnnouncement]:
            nonlocal scanned
            lines = process.lines
            # lines are only ever appended, so earlier lines need no rescan
            announcement = find_announcement(lines[scanned:])
            scanned = len(lines)
            return announcement

        async def check() -> Optional[ServiceAnnouncement]:
            announcement = scan()
            if announcement is not None:
                return announcement
            if not process.is_running:
                await process.wait_output()
                announcement = scan()
                if announcement is not None:
                    return announcement
                raise StartupTimeout(
                    "Backend",
                    timeout,
                    process.output,
                    detail=f"process exited with code {process.returncode} before announcing",
                )
            return None

        def progress(elapsed: float) -> None:
            nonlocal last_progress
            step = int(elapsed // constants.STARTUP_PROGRESS_EVERY)
            if step > last_progress:
                last_progress = step
                logger.info(f"Still waiting for backend to start... ({elapsed:.0f}s elapsed)")

        started = anyio.current_time()
        try:
            announcement = await wait_until(
                check,
                timeout=timeout,
                interval=constants.BACKEND_ANNOUNCE_INTERVAL,
                description="backend announcement",
                on_tick=progress,
            )
        except PollTimeout:
            raise StartupTimeout(
                "Backend", timeout, process.output, detail="no port information received"
            ) from None

        elapsed = anyio.current_time() - started
        if elapsed > constants.BACKEND_SLOW_START_WARNING:
            logger.warning(f"Backend took {elapsed:.1f}s to start (possibly database contention)")
        return announcement

    async def _await_health(self, announcement: ServiceAnnouncement) -> None:
        url = HarnessSettings.url(announcement.address, self.settings.routes.health_check)
        self.log_sink.backend(f"Waiting for backend to be ready at {url}")
        try:
            await wait_for_http(
                url,
                timeout=self.ready_timeout,
                interval=constants.BACKEND_READY_INTERVAL,
                require_ok=True,
                transport=self.transport,
            )
        except PollTimeout as exc:
            raise ReadinessTimeout("Backend", url, self.ready_timeout, exc.last_error) from None

    async def stop(self, instance: Optional[BackendInstance]) -> None:
        if instance is None:
            return
        self.log_sink.backend("Stopping test app")
        await instance.process.stop()
        self.log_sink.backend("Test app stopped")
