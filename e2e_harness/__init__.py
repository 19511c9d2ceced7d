"""Per-test end-to-end environments: backend, frontend, user and browser login."""

from e2e_harness.backend import BackendInstance, BackendSupervisor, ServiceAnnouncement
from e2e_harness.binary import BinaryProvisioner
from e2e_harness.config import HarnessSettings, get_settings
from e2e_harness.errors import HarnessError
from e2e_harness.frontend import FrontendInstance, FrontendSupervisor
from e2e_harness.lifecycle import LifecycleManager, LifecycleState, TestEnvironment
from e2e_harness.log_sink import LogSink, LogSource
from e2e_harness.login import LoginAutomator, LoginResult
from e2e_harness.retry import RetryPolicy
from e2e_harness.users import TestUser, UserProvisioner, UserResult

__version__ = "1.0.0"

__all__ = [
    "BackendInstance",
    "BackendSupervisor",
    "BinaryProvisioner",
    "FrontendInstance",
    "FrontendSupervisor",
    "HarnessError",
    "HarnessSettings",
    "LifecycleManager",
    "LifecycleState",
    "LogSink",
    "LogSource",
    "LoginAutomator",
    "LoginResult",
    "RetryPolicy",
    "ServiceAnnouncement",
    "TestEnvironment",
    "TestUser",
    "UserProvisioner",
    "UserResult",
    "get_settings",
]
