"""Error taxonomy for the e2e harness.

Every failure raised by the harness derives from ``HarnessError`` so test code
can catch setup problems in one place. Diagnostic payloads (status codes,
partial response bodies, captured process output, screenshot paths) travel on
the exception instance rather than being formatted away.
"""
from __future__ import annotations

from typing import Optional

# Upper bound for process output / response bodies embedded in error messages.
MAX_DIAGNOSTIC_CHARS = 500


def truncate(text: str, limit: int = MAX_DIAGNOSTIC_CHARS) -> str:
    """Return ``text`` cut to ``limit`` characters with a marker when cut."""
    if len(text) <= limit:
        return text
    return f"{text[:limit]}... [truncated {len(text) - limit} chars]"


class HarnessError(Exception):
    """Base class for all harness failures."""


class BuildFailure(HarnessError):
    """The backend binary could not be built."""

    def __init__(self, exit_code: int, output: str):
        self.exit_code = exit_code
        self.output = output
        super().__init__(
            f"Backend build failed with exit code {exit_code}. Output: {truncate(output)}"
        )


class StartupTimeout(HarnessError):
    """A child process did not announce itself within the startup window."""

    def __init__(self, component: str, timeout: float, output: str = "", detail: str = ""):
        self.component = component
        self.timeout = timeout
        self.output = truncate(output)
        message = f"{component} did not start within {timeout:g}s"
        if detail:
            message += f" ({detail})"
        message += f". Output: {self.output or '<empty>'}"
        super().__init__(message)


class PortNotDetected(HarnessError):
    """The frontend reported readiness but never printed its bound port."""

    def __init__(self, timeout: float, output: str = ""):
        self.timeout = timeout
        self.output = truncate(output)
        super().__init__(
            f"Failed to detect frontend port within {timeout:g}s. Output: {self.output or '<empty>'}"
        )


class ReadinessTimeout(HarnessError):
    """A discovered endpoint never answered its readiness probe."""

    def __init__(self, component: str, url: str, timeout: float, last_error: str = ""):
        self.component = component
        self.url = url
        self.timeout = timeout
        self.last_error = last_error
        message = f"{component} did not become ready at {url} within {timeout:g}s"
        if last_error:
            message += f" (last error: {last_error})"
        super().__init__(message)


class NetworkError(HarnessError):
    """Connection-level failure talking to the backend. Retryable."""

    def __init__(self, url: str, cause: BaseException):
        self.url = url
        self.cause = cause
        super().__init__(f"Network error calling {url}: {cause}")


class ServerError(HarnessError):
    """Backend answered with a 5xx status. Retryable."""

    def __init__(self, status: int, status_text: str, message: str):
        self.status = status
        self.status_text = status_text
        self.message = message
        super().__init__(f"Server error {status} {status_text}: {message}")


class ValidationFailure(HarnessError):
    """Backend refused a request. Never retried.

    Usually a 4xx. Redirects are not followed, so an unexpected 3xx lands here
    too, as does a 5xx that outlived the retry budget.
    """

    def __init__(self, status: int, status_text: str, message: str):
        self.status = status
        self.status_text = status_text
        self.message = message
        super().__init__(f"Request rejected with {status} {status_text}: {message}")

    def as_dict(self) -> dict:
        return {"status": self.status, "statusText": self.status_text, "message": self.message}


class VisibilityTimeout(HarnessError):
    """A successful write could not be observed by a follow-up read.

    Soft failure: it is logged as a warning and never raised to callers.
    """

    def __init__(self, url: str, attempts: int):
        self.url = url
        self.attempts = attempts
        super().__init__(f"Write not visible at {url} after {attempts} attempts")


class LoginError(HarnessError):
    """Base class for browser login failures.

    ``banner_text`` and ``screenshot_path`` are filled in by the login
    automator's diagnostics step before the error leaves it.
    """

    banner_text: Optional[str] = None
    screenshot_path: Optional[str] = None

    def attach_diagnostics(self, banner_text: Optional[str], screenshot_path: Optional[str]) -> None:
        self.banner_text = banner_text
        self.screenshot_path = screenshot_path
        extra = []
        if banner_text:
            extra.append(f"UI error: {banner_text}")
        if screenshot_path:
            extra.append(f"screenshot: {screenshot_path}")
        if extra:
            self.args = (f"{self.args[0]} [{'; '.join(extra)}]",) + tuple(self.args[1:])


class UnexpectedRedirect(LoginError):
    """Navigating to the login route landed somewhere else."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"Expected to be on {expected} page, but was on {actual}")


class LoginRequestFailure(LoginError):
    """The login POST failed or reported a logical failure."""

    def __init__(self, status: Optional[int], message: str, body: str = ""):
        self.status = status
        self.message = message
        self.body = truncate(body)
        if status is None:
            text = f"Login request failed: {message}"
        else:
            text = f"Login request failed with status {status}: {message}"
        super().__init__(text)


class AuthCheckTimeout(LoginError):
    """The post-login "who am I" check never resolved while still on the login page."""

    def __init__(self, timeout: float, url: str):
        self.timeout = timeout
        self.url = url
        super().__init__(f"Auth check did not succeed within {timeout:g}s; still on {url}")


class NavigationTimeout(LoginError):
    """The browser never reached the expected route after login."""

    def __init__(self, expected: str, actual: str, timeout: float):
        self.expected = expected
        self.actual = actual
        self.timeout = timeout
        super().__init__(
            f"Login failed: expected to reach {expected} within {timeout:g}s, but was on {actual}"
        )


class CleanupError(HarnessError):
    """Teardown failure. Always logged, never raised."""

    def __init__(self, component: str, cause: BaseException):
        self.component = component
        self.cause = cause
        super().__init__(f"Error during {component} cleanup: {cause}")
