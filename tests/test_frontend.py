import httpx
import pytest

from conftest import posix_only, read_log
from e2e_harness.errors import PortNotDetected, ReadinessTimeout, StartupTimeout
from e2e_harness.frontend import FrontendMonitor, FrontendSupervisor, extract_port, strip_ansi

VITE_BANNER = "\x1b[32m➜\x1b[0m  Local:   http://localhost:3007/"


def test_extract_port_from_coloured_banner():
    assert extract_port(VITE_BANNER) == 3007


def test_extract_port_handles_bold_port_digits():
    line = "  \x1b[32m➜\x1b[39m  \x1b[1mLocal\x1b[22m:   \x1b[36mhttp://localhost:\x1b[1m5173\x1b[22m/\x1b[39m"

    assert extract_port(line) == 5173


def test_extract_port_ignores_network_lines():
    assert extract_port("  ➜  Network: use --host to expose") is None


def test_strip_ansi():
    assert strip_ansi("\x1b[1;32mVITE\x1b[0m v5.0.0 \x1b[?25lready") == "VITE v5.0.0 ready"


def test_monitor_tracks_port_and_ready_marker(sink):
    monitor = FrontendMonitor(("Local:", "ready", "VITE"), sink)

    monitor("some warning", "stderr")
    assert not monitor.ready

    monitor("\x1b[35mVITE\x1b[0m v5.0.0  ready in 312 ms", "stdout")
    assert monitor.ready
    assert monitor.port is None

    monitor(VITE_BANNER, "stdout")
    monitor("  ➜  Local:   http://localhost:4000/", "stdout")
    assert monitor.port == 3007
    assert "Detected frontend port: 3007" in read_log(sink)


# ---------------------------------------------------------------------------
# Supervisor against fake dev servers
# ---------------------------------------------------------------------------


def _dev_server(settings, body: str):
    script = settings.frontend_command[-1]
    with open(script, "w", encoding="utf-8") as fh:
        fh.write(body)


def _supervisor(settings, sink, status: int = 404) -> FrontendSupervisor:
    transport = httpx.MockTransport(lambda request: httpx.Response(status, text="<html></html>"))
    supervisor = FrontendSupervisor(settings, sink, transport=transport)
    supervisor.settle_delay = 0
    return supervisor


VITE_DEV_SERVER = """\
import os, sys, time
out = sys.stdout.buffer
out.write(b"\\x1b[35mVITE\\x1b[0m v5.0.0  ready in 120 ms\\n")
out.write("\\x1b[32m\\u279c\\x1b[0m  Local:   http://localhost:3007/\\n".encode("utf-8"))
out.write(("backend port " + os.environ["BACKEND_PORT"] + "\\n").encode())
out.flush()
time.sleep(30)
"""


@posix_only
@pytest.mark.asyncio
async def test_spawn_detects_port_and_passes_backend_port(settings, sink):
    _dev_server(settings, VITE_DEV_SERVER)
    supervisor = _supervisor(settings, sink)

    instance = await supervisor.spawn(5555)
    try:
        assert instance.port == 3007
        assert instance.url == "http://localhost:3007"
        assert instance.backend_port == 5555
        assert instance.page_url("/login") == "http://localhost:3007/login"
    finally:
        await supervisor.stop(instance)

    assert "backend port 5555" in instance.process.output
    assert not instance.process.is_running
    log = read_log(sink)
    assert "[FRONTEND]" in log
    assert "Frontend server accessible at http://localhost:3007" in log


@posix_only
@pytest.mark.asyncio
async def test_spawn_raises_port_not_detected(settings, sink):
    _dev_server(settings, "import time\nprint('VITE v5.0.0 ready in 99 ms', flush=True)\ntime.sleep(30)\n")
    supervisor = _supervisor(settings, sink)
    supervisor.start_timeout = 1.0

    with pytest.raises(PortNotDetected) as excinfo:
        await supervisor.spawn(5555)

    assert "VITE v5.0.0" in excinfo.value.output


@posix_only
@pytest.mark.asyncio
async def test_spawn_reports_stderr_when_never_ready(settings, sink):
    _dev_server(
        settings,
        "import sys, time\nprint('sh: vite: command not found', file=sys.stderr, flush=True)\ntime.sleep(30)\n",
    )
    supervisor = _supervisor(settings, sink)
    supervisor.start_timeout = 1.0

    with pytest.raises(StartupTimeout) as excinfo:
        await supervisor.spawn(5555)

    assert "vite: command not found" in str(excinfo.value)


@posix_only
@pytest.mark.asyncio
async def test_spawn_fails_when_dev_server_exits(settings, sink):
    _dev_server(settings, "import sys\nprint('npm ERR! missing script: dev', flush=True)\nsys.exit(1)\n")
    supervisor = _supervisor(settings, sink)

    with pytest.raises(StartupTimeout) as excinfo:
        await supervisor.spawn(5555)

    assert "exited with code 1" in str(excinfo.value)
    assert "missing script: dev" in str(excinfo.value)


@posix_only
@pytest.mark.asyncio
async def test_spawn_raises_readiness_timeout_when_unreachable(settings, sink):
    _dev_server(settings, VITE_DEV_SERVER)

    def refuse(request):
        raise httpx.ConnectError("connection refused", request=request)

    supervisor = FrontendSupervisor(settings, sink, transport=httpx.MockTransport(refuse))
    supervisor.accessible_timeout = 0.6

    with pytest.raises(ReadinessTimeout) as excinfo:
        await supervisor.spawn(5555)

    assert "ConnectError" in excinfo.value.last_error


@pytest.mark.asyncio
async def test_spawn_reports_missing_command(settings, sink):
    settings = settings.with_overrides(frontend_command=["definitely-not-a-dev-server-xyz"])
    supervisor = FrontendSupervisor(settings, sink)

    with pytest.raises(StartupTimeout) as excinfo:
        await supervisor.spawn(5555)

    assert "failed to launch" in str(excinfo.value)
