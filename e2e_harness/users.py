"""Create test users through the backend's real API.

User creation goes through the same endpoint the initial-password page uses,
so the code path under test is the one real users hit. Transient failures
(connection errors, 5xx) are retried with backoff; validation failures (4xx)
come back as a structured result.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Any, Dict, Optional

import anyio
import httpx

from e2e_harness import constants
from e2e_harness.config import RouteSet
from e2e_harness.errors import (
    LoginRequestFailure,
    NetworkError,
    ServerError,
    ValidationFailure,
    VisibilityTimeout,
    truncate,
)
from e2e_harness.log_sink import LogSink
from e2e_harness.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class TestUser:
    __test__ = False

    username: str
    password: str
    user_id: Optional[str] = None


@dataclass
class UserResult:
    success: bool
    user: Optional[TestUser] = None
    error: Optional[ValidationFailure] = None


def generate_test_user(prefix: str = "e2e-user") -> TestUser:
    """Unique credentials; the password clears the backend's 12-character minimum."""
    suffix = secrets.token_hex(4)
    return TestUser(username=f"{prefix}-{suffix}", password=f"pw-{secrets.token_urlsafe(18)}")


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return truncate(response.text) or response.reason_phrase
    if isinstance(data, dict):
        for key in ("error", "message"):
            if data.get(key):
                return str(data[key])
    return truncate(response.text)


class UserProvisioner:
    """Creates users over HTTP and waits until the write is visible."""

    def __init__(
        self,
        routes: Optional[RouteSet] = None,
        log_sink: Optional[LogSink] = None,
        retry_policy: Optional[RetryPolicy] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.routes = routes or RouteSet()
        self.log_sink = log_sink
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=constants.USER_CREATE_MAX_ATTEMPTS,
            base_delay=constants.USER_CREATE_BASE_DELAY,
        )
        self.transport = transport
        self.timeout = timeout
        self.visibility_attempts = constants.USER_VERIFICATION_MAX_RETRIES
        self.visibility_delay = constants.USER_VERIFICATION_RETRY_DELAY
        self.settle_delay = constants.DELAY_SESSION_STORE_READY

    def _client(self, backend_address: str) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=backend_address.rstrip("/"), timeout=self.timeout, transport=self.transport
        )

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self.log_sink is not None:
            self.log_sink.test(message)

    async def make_user(self, backend_address: str, username: str, password: str) -> UserResult:
        payload = {"username": username, "password": password, "password_confirmation": password}
        route = self.routes.create_user

        async with self._client(backend_address) as client:

            async def attempt(number: int) -> httpx.Response:
                try:
                    response = await client.post(route, json=payload)
                except httpx.TransportError as exc:
                    raise NetworkError(f"{backend_address}{route}", exc) from exc
                if response.status_code >= 500:
                    raise ServerError(response.status_code, response.reason_phrase, _error_message(response))
                return response

            try:
                response = await self.retry_policy.run(attempt, description=f"Create user {username!r}")
            except ServerError as exc:
                self._log(f"ERROR: Creating user {username!r} failed: {exc}", logging.ERROR)
                failure = ValidationFailure(exc.status, exc.status_text, exc.message)
                return UserResult(success=False, error=failure)

            if not response.is_success:
                failure = ValidationFailure(
                    response.status_code, response.reason_phrase, _error_message(response)
                )
                self._log(f"ERROR: Creating user {username!r} rejected: {failure}", logging.ERROR)
                return UserResult(success=False, error=failure)

            user = TestUser(username=username, password=password, user_id=self._user_id(response))
            self._log(f"Created user {username!r} (user_id={user.user_id or 'N/A'})")

            if not await self._confirm_visible(client):
                warning = VisibilityTimeout(f"{backend_address}{self.routes.users_exist}", self.visibility_attempts)
                self._log(f"WARNING: {warning}", logging.WARNING)

        await anyio.sleep(self.settle_delay)
        return UserResult(success=True, user=user)

    @staticmethod
    def _user_id(response: httpx.Response) -> Optional[str]:
        try:
            data: Dict[str, Any] = response.json()
        except ValueError:
            return None
        if isinstance(data, dict) and data.get("user_id") is not None:
            return str(data["user_id"])
        return None

    async def _confirm_visible(self, client: httpx.AsyncClient) -> bool:
        for attempt in range(1, self.visibility_attempts + 1):
            try:
                response = await client.get(self.routes.users_exist)
                if response.is_success and response.json().get("users_exist") is True:
                    return True
            except (httpx.HTTPError, ValueError, AttributeError) as exc:
                logger.debug(f"users-exist check {attempt} failed: {exc}")
            if attempt < self.visibility_attempts:
                await anyio.sleep(self.visibility_delay)
        return False

    async def verify_api_login(self, backend_address: str, username: str, password: str) -> None:
        """Log in over the API to catch credential problems before the browser does.

        Raises ``LoginRequestFailure`` when the backend refuses the credentials.
        """
        self._log("Testing API login before browser login...")
        async with self._client(backend_address) as client:
            try:
                response = await client.post(
                    self.routes.login, json={"username": username, "password": password}
                )
            except httpx.TransportError as exc:
                raise NetworkError(f"{backend_address}{self.routes.login}", exc) from exc

        if response.status_code != 200:
            raise LoginRequestFailure(
                response.status_code,
                f"API login test failed: {_error_message(response)}. Username: {username!r}, "
                f"Password length: {len(password)}",
                response.text,
            )
        try:
            data = response.json()
        except ValueError:
            data = None
        if isinstance(data, dict) and data.get("success") is False:
            raise LoginRequestFailure(
                200, f"API login test failed: {data.get('error') or 'Unknown error'}", response.text
            )
        self._log("API login test successful")
