import os
import stat
import sys
from pathlib import Path

import pytest

from e2e_harness.config import HarnessSettings
from e2e_harness.env_defaults import clear_cache
from e2e_harness.log_sink import LogSink

pytest_plugins = ["pytester"]

HARNESS_ENV_VARS = (
    "E2E_PROJECT_ROOT",
    "E2E_BACKEND_BINARY",
    "E2E_BUILD_COMMAND",
    "E2E_FRONTEND_DIR",
    "E2E_FRONTEND_COMMAND",
    "E2E_LOG_DIR",
    "SCREENSHOT_DIR",
    "PLAYWRIGHT_HEADLESS",
    "E2E_ROUTE_HEALTH_CHECK",
    "E2E_ROUTE_CREATE_USER",
    "E2E_ROUTE_USERS_EXIST",
    "E2E_ROUTE_LOGIN",
    "E2E_ROUTE_AUTH_CHECK",
    "E2E_ROUTE_DASHBOARD",
    "E2E_SESSION_COOKIE",
    "E2E_API_LOGIN_PREFLIGHT",
)

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses shebang scripts and process groups")


def write_script(path: Path, body: str) -> Path:
    """Write an executable Python script that runs under the current interpreter."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f"#!{sys.executable}\n{body}", encoding="utf-8")
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def clean_env(monkeypatch, tmp_path):
    """Harness variables unset and the project root pointed at tmp_path."""
    for key in HARNESS_ENV_VARS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("E2E_PROJECT_ROOT", str(tmp_path))
    clear_cache()
    yield tmp_path
    clear_cache()


@pytest.fixture
def settings(tmp_path) -> HarnessSettings:
    return HarnessSettings(
        project_root=tmp_path,
        backend_binary=tmp_path / "bin" / "spawn_test_server",
        build_command=["cargo", "build"],
        frontend_dir=tmp_path,
        frontend_command=[sys.executable, str(tmp_path / "dev_server.py")],
        log_dir=tmp_path / "logs",
        screenshot_dir=tmp_path / "screenshots",
    )


@pytest.fixture
def sink(tmp_path) -> LogSink:
    return LogSink(tmp_path / "logs", "harness self test")


def read_log(sink: LogSink) -> str:
    if not os.path.exists(sink.path):
        return ""
    return sink.path.read_text(encoding="utf-8")
