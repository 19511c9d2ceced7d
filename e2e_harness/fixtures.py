"""pytest plugin exposing harness fixtures.

Registered through the ``pytest11`` entry point, so installing the package is
enough. Typical use::

    @pytest.mark.asyncio
    async def test_dashboard(authenticated_page):
        await authenticated_page.click("text=Blog")

Per-test behaviour is tuned with the ``e2e`` marker::

    @pytest.mark.e2e(create_user=False)
    async def test_initial_password_page(e2e_env): ...
"""
from __future__ import annotations

import time
from contextlib import AsyncExitStack
from datetime import datetime, timezone

import pytest
import pytest_asyncio

from e2e_harness.backend import BackendSupervisor, backend_test_name
from e2e_harness.config import HarnessSettings, get_settings
from e2e_harness.frontend import FrontendSupervisor
from e2e_harness.lifecycle import LifecycleManager
from e2e_harness.log_sink import LogSink
from e2e_harness.playwright_client import PlaywrightClient

LOG_SINK_KEY = pytest.StashKey[LogSink]()
STARTED_KEY = pytest.StashKey[float]()
CALL_ERROR_KEY = pytest.StashKey[BaseException]()


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "e2e(create_user=True, with_frontend=True, login=True): options for the e2e_env fixture",
    )


def _marker_options(request) -> dict:
    options = {"create_user": True, "with_frontend": True, "login": True}
    marker = request.node.get_closest_marker("e2e")
    if marker is not None:
        options.update(marker.kwargs)
    return options


@pytest.fixture(scope="session")
def harness_settings() -> HarnessSettings:
    """Settings resolved once per session from the environment."""
    return get_settings()


@pytest.fixture()
def harness_log_sink(request, harness_settings):
    """Per-test log file, also picked up by the result reporter."""
    sink = LogSink(harness_settings.log_dir, request.node.nodeid)
    request.node.stash[LOG_SINK_KEY] = sink
    request.node.stash[STARTED_KEY] = time.monotonic()
    return sink


@pytest_asyncio.fixture()
async def playwright_client(harness_settings):
    """Create a Playwright client instance."""
    async with PlaywrightClient.from_settings(harness_settings) as client:
        yield client


@pytest_asyncio.fixture()
async def e2e_page(playwright_client):
    return playwright_client.page


@pytest_asyncio.fixture()
async def backend_app(request, harness_settings, harness_log_sink):
    """A freshly spawned backend, without frontend or users."""
    supervisor = BackendSupervisor(harness_settings, harness_log_sink)
    instance = await supervisor.spawn(backend_test_name(request.node.name))
    try:
        yield instance
    finally:
        await supervisor.stop(instance)


@pytest_asyncio.fixture()
async def frontend_server(harness_settings, harness_log_sink, backend_app):
    """Dev server wired to ``backend_app``."""
    supervisor = FrontendSupervisor(harness_settings, harness_log_sink)
    instance = await supervisor.spawn(backend_app.port)
    try:
        yield instance
    finally:
        await supervisor.stop(instance)


@pytest.fixture()
def lifecycle_manager(harness_settings, harness_log_sink) -> LifecycleManager:
    return LifecycleManager(harness_settings, harness_log_sink)


@pytest_asyncio.fixture()
async def e2e_env(request, harness_settings, lifecycle_manager):
    """Full environment: backend, frontend, user and (by default) a logged-in page.

    Options come from the ``e2e`` marker; see ``pytest_configure``. The browser
    is only launched when ``login`` is enabled.
    """
    options = _marker_options(request)
    async with AsyncExitStack() as stack:
        page = None
        if options["login"]:
            client = await stack.enter_async_context(PlaywrightClient.from_settings(harness_settings))
            page = client.page
        env = await stack.enter_async_context(
            lifecycle_manager.environment(
                request.node.name,
                page,
                create_user=options["create_user"],
                with_frontend=options["with_frontend"],
            )
        )
        yield env
        error = request.node.stash.get(CALL_ERROR_KEY, None)
        if error is not None:
            lifecycle_manager.record_failure(env, error)


@pytest_asyncio.fixture()
async def authenticated_page(e2e_env):
    """Page already logged in and sitting on the dashboard."""
    if e2e_env.login is None:
        pytest.fail("authenticated_page needs a frontend, a user and login enabled")
    return e2e_env.page


# ============================================================================
# Result reporter
# ============================================================================


def _result_block(item, report) -> dict:
    started = item.stash.get(STARTED_KEY, None)
    duration = time.monotonic() - started if started is not None else report.duration
    error = None
    if report.failed:
        error = report.longreprtext[-2000:] or None
    return {
        "test": item.nodeid,
        "phase": report.when,
        "outcome": report.outcome,
        "duration_ms": int(duration * 1000),
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    if report.when == "call" and report.failed and call.excinfo is not None:
        item.stash[CALL_ERROR_KEY] = call.excinfo.value
    sink = item.stash.get(LOG_SINK_KEY, None)
    if sink is None:
        return
    # one block per test: the call phase, or whichever phase failed first
    if report.when == "call" or (report.when == "setup" and not report.passed):
        sink.write_block("Test Result", _result_block(item, report))
    elif report.when == "teardown" and report.failed:
        sink.write_block("Teardown Result", _result_block(item, report))
