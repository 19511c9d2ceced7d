"""Harness configuration.

Configuration is read from environment variables, falling back to the
project's ``.env.defaults`` file and finally to built-in defaults:

- ``E2E_PROJECT_ROOT``: repository root (default: current directory)
- ``E2E_BACKEND_BINARY``: backend test-server binary, relative to the root
- ``E2E_BUILD_COMMAND``: command that builds the binary when it is missing
- ``E2E_FRONTEND_DIR`` / ``E2E_FRONTEND_COMMAND``: dev-server location and command
- ``E2E_LOG_DIR``: per-test log files
- ``SCREENSHOT_DIR``: login failure screenshots
- ``PLAYWRIGHT_HEADLESS``: "true"/"false"
- ``E2E_ROUTE_*``: backend and UI routes (see ``RouteSet``)
- ``E2E_SESSION_COOKIE``: name of the session cookie checked after login
- ``E2E_API_LOGIN_PREFLIGHT``: verify credentials over the API before the browser login
"""
from __future__ import annotations

import shlex
from dataclasses import dataclass, field, replace
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Tuple
from urllib.parse import urljoin

from e2e_harness.env_defaults import get_env, project_root

DEFAULT_BACKEND_BINARY = "target/release/spawn_test_server"
DEFAULT_BUILD_COMMAND = "cargo build --bin spawn_test_server --features e2e-tests --release"
DEFAULT_FRONTEND_COMMAND = "npm run dev"
DEFAULT_READY_MARKERS: Tuple[str, ...] = ("Local:", "ready", "VITE")


def _flag(value: str | None, default: bool) -> bool:
    if value is None or value == "":
        return default
    return value.lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class RouteSet:
    """The one authoritative set of routes the harness talks to."""

    health_check: str = "/health_check"
    create_user: str = "/api/initial_password"
    users_exist: str = "/api/users/exists"
    login: str = "/login"
    auth_check: str = "/api/auth/me"
    dashboard: str = "/admin/dashboard"

    @classmethod
    def from_env(cls) -> "RouteSet":
        base = cls()
        return cls(
            health_check=get_env("E2E_ROUTE_HEALTH_CHECK", base.health_check),
            create_user=get_env("E2E_ROUTE_CREATE_USER", base.create_user),
            users_exist=get_env("E2E_ROUTE_USERS_EXIST", base.users_exist),
            login=get_env("E2E_ROUTE_LOGIN", base.login),
            auth_check=get_env("E2E_ROUTE_AUTH_CHECK", base.auth_check),
            dashboard=get_env("E2E_ROUTE_DASHBOARD", base.dashboard),
        )


@dataclass(frozen=True)
class LoginSelectors:
    username: str = 'input[name="username"], input[autocomplete="username"], input[type="text"]'
    password: str = 'input[type="password"]'
    submit: str = 'button[type="submit"]'
    error_banner: str = '[role="alert"]'


@dataclass(frozen=True)
class HarnessSettings:
    """Concrete settings for one harness run."""

    project_root: Path
    backend_binary: Path
    build_command: List[str]
    frontend_dir: Path
    frontend_command: List[str]
    log_dir: Path
    screenshot_dir: Path
    playwright_headless: bool = True
    routes: RouteSet = field(default_factory=RouteSet)
    selectors: LoginSelectors = field(default_factory=LoginSelectors)
    ready_markers: Tuple[str, ...] = DEFAULT_READY_MARKERS
    session_cookie: str | None = "id"
    api_login_preflight: bool = False
    backend_env: Dict[str, str] = field(default_factory=dict)
    frontend_env: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_env(cls) -> "HarnessSettings":
        root = project_root()

        def _path(key: str, default: str) -> Path:
            value = Path(get_env(key, default))
            return value if value.is_absolute() else root / value

        log_dir = _path("E2E_LOG_DIR", "logs/e2e")
        screenshot_default = str(log_dir / "screenshots")
        cookie = get_env("E2E_SESSION_COOKIE", "id")

        return cls(
            project_root=root,
            backend_binary=_path("E2E_BACKEND_BINARY", DEFAULT_BACKEND_BINARY),
            build_command=shlex.split(get_env("E2E_BUILD_COMMAND", DEFAULT_BUILD_COMMAND)),
            frontend_dir=_path("E2E_FRONTEND_DIR", "frontend"),
            frontend_command=shlex.split(get_env("E2E_FRONTEND_COMMAND", DEFAULT_FRONTEND_COMMAND)),
            log_dir=log_dir,
            screenshot_dir=_path("SCREENSHOT_DIR", screenshot_default),
            playwright_headless=_flag(get_env("PLAYWRIGHT_HEADLESS"), True),
            routes=RouteSet.from_env(),
            session_cookie=cookie or None,
            api_login_preflight=_flag(get_env("E2E_API_LOGIN_PREFLIGHT"), False),
        )

    def with_overrides(self, **changes) -> "HarnessSettings":
        return replace(self, **changes)

    @staticmethod
    def url(base_url: str, path: str) -> str:
        """Return an absolute URL for ``path`` under ``base_url``."""
        return urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


@lru_cache(maxsize=1)
def get_settings() -> HarnessSettings:
    return HarnessSettings.from_env()
