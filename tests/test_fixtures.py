import json
from types import SimpleNamespace

import pytest

from e2e_harness import fixtures
from e2e_harness.log_sink import LogSink


class FakeItem:
    def __init__(self, nodeid, sink=None):
        self.nodeid = nodeid
        self.stash = pytest.Stash()
        if sink is not None:
            self.stash[fixtures.LOG_SINK_KEY] = sink
            self.stash[fixtures.STARTED_KEY] = 0.0


def _report(when, outcome, longreprtext=""):
    return SimpleNamespace(
        when=when,
        outcome=outcome,
        passed=outcome == "passed",
        failed=outcome == "failed",
        duration=0.25,
        longreprtext=longreprtext,
    )


def _run_hook(item, report, excinfo=None):
    hook = fixtures.pytest_runtest_makereport(item, SimpleNamespace(excinfo=excinfo))
    next(hook)
    with pytest.raises(StopIteration):
        hook.send(SimpleNamespace(get_result=lambda: report))


def _blocks(sink):
    text = sink.path.read_text(encoding="utf-8")
    return [json.loads(chunk.split("\n=== ")[0]) for chunk in text.split("=== Test Result ===\n")[1:]]


def test_reporter_writes_result_block_for_call_phase(tmp_path):
    sink = LogSink(tmp_path, "tests/test_x.py::test_login")
    item = FakeItem("tests/test_x.py::test_login", sink)

    _run_hook(item, _report("setup", "passed"))
    _run_hook(item, _report("call", "failed", "AssertionError: expected dashboard"))
    _run_hook(item, _report("teardown", "passed"))

    [block] = _blocks(sink)
    assert block["test"] == "tests/test_x.py::test_login"
    assert block["outcome"] == "failed"
    assert block["phase"] == "call"
    assert "expected dashboard" in block["error"]
    assert block["duration_ms"] > 0
    assert block["timestamp"]


def test_reporter_records_setup_failures(tmp_path):
    sink = LogSink(tmp_path, "setup fails")
    item = FakeItem("tests/test_x.py::test_setup", sink)

    _run_hook(item, _report("setup", "failed", "StartupTimeout: Backend did not start"))

    [block] = _blocks(sink)
    assert block["phase"] == "setup"
    assert "StartupTimeout" in block["error"]


def test_reporter_ignores_tests_without_harness():
    item = FakeItem("tests/test_plain.py::test_nothing")

    _run_hook(item, _report("call", "passed"))


def test_marker_options_defaults_and_overrides():
    marker = SimpleNamespace(kwargs={"create_user": False})
    with_marker = SimpleNamespace(node=SimpleNamespace(get_closest_marker=lambda name: marker))
    without = SimpleNamespace(node=SimpleNamespace(get_closest_marker=lambda name: None))

    assert fixtures._marker_options(without) == {"create_user": True, "with_frontend": True, "login": True}
    assert fixtures._marker_options(with_marker)["create_user"] is False


def test_reporter_stashes_call_errors_for_e2e_env(tmp_path):
    item = FakeItem("tests/test_x.py::test_login", LogSink(tmp_path, "stash"))
    error = AssertionError("expected dashboard")

    _run_hook(item, _report("setup", "passed"))
    assert fixtures.CALL_ERROR_KEY not in item.stash

    _run_hook(item, _report("call", "failed"), excinfo=SimpleNamespace(value=error))
    assert item.stash[fixtures.CALL_ERROR_KEY] is error


INNER_CONFTEST = '''
import sys

import pytest

from e2e_harness import fixtures
from e2e_harness.backend import BackendInstance
from e2e_harness.config import HarnessSettings
from e2e_harness.lifecycle import LifecycleManager


class NoBrowser:
    def __init__(self, *args, **kwargs):
        raise AssertionError("browser launched without login")

    @classmethod
    def from_settings(cls, settings):
        return cls()


class FakeBackends:
    async def spawn(self, test_name):
        return BackendInstance(port=5555, address="http://127.0.0.1:5555", test_name=test_name, process=None)

    async def stop(self, instance):
        pass


class FakeFrontends:
    async def stop(self, instance):
        pass


@pytest.fixture(autouse=True)
def no_browser(monkeypatch):
    monkeypatch.setattr(fixtures, "PlaywrightClient", NoBrowser)


@pytest.fixture(scope="session")
def harness_settings(tmp_path_factory):
    root = tmp_path_factory.getbasetemp()
    return HarnessSettings(
        project_root=root,
        backend_binary=root / "spawn_test_server",
        build_command=["true"],
        frontend_dir=root,
        frontend_command=[sys.executable, "-c", "pass"],
        log_dir=LOG_DIR,
        screenshot_dir=root / "screenshots",
    )


@pytest.fixture()
def lifecycle_manager(harness_settings, harness_log_sink):
    return LifecycleManager(harness_settings, harness_log_sink, backends=FakeBackends(), frontends=FakeFrontends())
'''

INNER_TESTS = '''
import pytest

NO_BROWSER = pytest.mark.e2e(create_user=False, with_frontend=False, login=False)


@NO_BROWSER
@pytest.mark.asyncio
async def test_passes(e2e_env):
    assert e2e_env.page is None
    assert e2e_env.backend.port == 5555


@NO_BROWSER
@pytest.mark.asyncio
async def test_fails(e2e_env):
    assert e2e_env.backend.port == 1, "dashboard never rendered"
'''


def test_e2e_env_marks_failed_tests_and_skips_browser_without_login(pytester):
    log_dir = pytester.path / "logs"
    pytester.makeconftest(f"LOG_DIR = {str(log_dir)!r}\n" + INNER_CONFTEST)
    pytester.makepyfile(test_env=INNER_TESTS)

    result = pytester.runpytest("-p", "no:e2e_harness", "-p", "e2e_harness.fixtures")

    result.assert_outcomes(passed=1, failed=1)
    [failed_log] = log_dir.glob("*test_fails.log")
    [passed_log] = log_dir.glob("*test_passes.log")
    failed = failed_log.read_text(encoding="utf-8")
    passed = passed_log.read_text(encoding="utf-8")
    assert "State: TEST_RUNNING -> FAILED" in failed
    assert "State: FAILED -> TEARDOWN" in failed
    assert "dashboard never rendered" in failed
    assert "State: TEST_RUNNING -> TEARDOWN" in passed
    assert "FAILED" not in passed.split("=== Test Result ===")[0]
