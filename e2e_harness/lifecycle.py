"""Per-test environment composition.

``LifecycleManager.environment()`` is an async context manager that brings up
backend → frontend → user → browser login, hands the result to the test body
and tears everything down in reverse order on every exit path::

    async with manager.environment("login works", page=page) as env:
        await env.page.goto(env.frontend.page_url("/admin/blog"))
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, List, Optional

from playwright.async_api import Page

from e2e_harness.backend import BackendInstance, BackendSupervisor, backend_test_name
from e2e_harness.config import HarnessSettings
from e2e_harness.frontend import FrontendInstance, FrontendSupervisor
from e2e_harness.log_sink import LogSink
from e2e_harness.login import LoginAutomator, LoginResult
from e2e_harness.users import TestUser, UserProvisioner, generate_test_user

logger = logging.getLogger(__name__)


class LifecycleState(str, Enum):
    INIT = "INIT"
    BACKEND_STARTING = "BACKEND_STARTING"
    BACKEND_READY = "BACKEND_READY"
    FRONTEND_STARTING = "FRONTEND_STARTING"
    FRONTEND_READY = "FRONTEND_READY"
    USER_CREATED = "USER_CREATED"
    LOGGED_IN = "LOGGED_IN"
    TEST_RUNNING = "TEST_RUNNING"
    FAILED = "FAILED"
    TEARDOWN = "TEARDOWN"
    DONE = "DONE"


@dataclass
class TestEnvironment:
    """Everything a test body gets from the harness."""

    __test__ = False

    test_name: str
    state: LifecycleState = LifecycleState.INIT
    history: List[LifecycleState] = field(default_factory=lambda: [LifecycleState.INIT])
    backend: Optional[BackendInstance] = None
    frontend: Optional[FrontendInstance] = None
    user: Optional[TestUser] = None
    page: Optional[Page] = None
    login: Optional[LoginResult] = None
    error: Optional[BaseException] = None


class LifecycleManager:
    """Composes the supervisors and provisioners into one scoped environment."""

    def __init__(
        self,
        settings: HarnessSettings,
        log_sink: LogSink,
        *,
        backends: Optional[BackendSupervisor] = None,
        frontends: Optional[FrontendSupervisor] = None,
        users: Optional[UserProvisioner] = None,
    ):
        self.settings = settings
        self.log_sink = log_sink
        self.backends = backends or BackendSupervisor(settings, log_sink)
        self.frontends = frontends or FrontendSupervisor(settings, log_sink)
        self.users = users or UserProvisioner(settings.routes, log_sink)

    def _transition(self, env: TestEnvironment, state: LifecycleState) -> None:
        previous = env.state
        env.state = state
        env.history.append(state)
        logger.debug(f"[{env.test_name}] {previous.value} -> {state.value}")
        self.log_sink.test(f"State: {previous.value} -> {state.value}")

    def login_automator(self, frontend: FrontendInstance) -> LoginAutomator:
        return LoginAutomator(
            frontend.url,
            routes=self.settings.routes,
            selectors=self.settings.selectors,
            log_sink=self.log_sink,
            screenshot_dir=self.settings.screenshot_dir,
            session_cookie=self.settings.session_cookie,
        )

    def record_failure(self, env: TestEnvironment, exc: BaseException) -> None:
        """Mark ``env`` FAILED; also used for errors raised outside the context, like a pytest test body."""
        if env.state in (LifecycleState.FAILED, LifecycleState.TEARDOWN, LifecycleState.DONE):
            return
        env.error = exc
        self.log_sink.test(f"ERROR: {type(exc).__name__}: {exc}")
        self._transition(env, LifecycleState.FAILED)

    @asynccontextmanager
    async def environment(
        self,
        test_name: str,
        page: Optional[Page] = None,
        *,
        create_user: bool = True,
        user: Optional[TestUser] = None,
        with_frontend: bool = True,
    ) -> AsyncIterator[TestEnvironment]:
        env = TestEnvironment(test_name=test_name, page=page)
        self.log_sink.test(f"Starting test: {test_name}")
        try:
            await self._setup(env, create_user=create_user, user=user, with_frontend=with_frontend)
            self._transition(env, LifecycleState.TEST_RUNNING)
            yield env
        except BaseException as exc:
            self.record_failure(env, exc)
            raise
        finally:
            self._transition(env, LifecycleState.TEARDOWN)
            await self._teardown(env)
            self._transition(env, LifecycleState.DONE)

    async def _setup(
        self,
        env: TestEnvironment,
        *,
        create_user: bool,
        user: Optional[TestUser],
        with_frontend: bool,
    ) -> None:
        self._transition(env, LifecycleState.BACKEND_STARTING)
        env.backend = await self.backends.spawn(backend_test_name(env.test_name))
        self._transition(env, LifecycleState.BACKEND_READY)

        if with_frontend:
            self._transition(env, LifecycleState.FRONTEND_STARTING)
            env.frontend = await self.frontends.spawn(env.backend.port)
            self._transition(env, LifecycleState.FRONTEND_READY)

        if create_user:
            wanted = user or generate_test_user()
            result = await self.users.make_user(env.backend.address, wanted.username, wanted.password)
            if not result.success:
                raise result.error
            env.user = result.user
            self._transition(env, LifecycleState.USER_CREATED)

            if self.settings.api_login_preflight:
                await self.users.verify_api_login(env.backend.address, env.user.username, env.user.password)

            if env.page is not None and env.frontend is not None:
                automator = self.login_automator(env.frontend)
                env.login = await automator.login(env.page, env.user.username, env.user.password)
                self._transition(env, LifecycleState.LOGGED_IN)

    async def _teardown(self, env: TestEnvironment) -> None:
        # stop() never raises; the guards cover anything unexpected around it
        try:
            await self.frontends.stop(env.frontend)
        except Exception as exc:
            logger.warning(f"Frontend teardown failed for {env.test_name}: {exc}")
        try:
            await self.backends.stop(env.backend)
        except Exception as exc:
            logger.warning(f"Backend teardown failed for {env.test_name}: {exc}")
