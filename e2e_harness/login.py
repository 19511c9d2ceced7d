"""Browser login driven through the real UI.

The automator does not trust what the page shows. It watches the network
traffic behind the form: the login POST decides success or failure, and the
follow-up auth check tells us the SPA is about to navigate. When anything goes
wrong the error is enriched with the visible error banner and a screenshot.
"""
from __future__ import annotations

import asyncio
import json
import logging
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Tuple
from urllib.parse import urlparse

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page, Response, TimeoutError as PlaywrightTimeout

from e2e_harness import constants
from e2e_harness.config import HarnessSettings, LoginSelectors, RouteSet
from e2e_harness.errors import (
    AuthCheckTimeout,
    LoginError,
    LoginRequestFailure,
    NavigationTimeout,
    UnexpectedRedirect,
    truncate,
)
from e2e_harness.log_sink import LogSink, sanitize_test_name

logger = logging.getLogger(__name__)

DECODE_FAILURE_MARKER = "<unable to decode response body>"


def _ms(seconds: float) -> float:
    return seconds * 1000


def on_route(url: str, route: str) -> bool:
    return route in urlparse(url).path


@dataclass
class LoginResult:
    url: str
    session_cookie_present: bool


async def describe_failed_response(response: Response) -> Tuple[str, str]:
    """Best-effort (message, body) for a failed response. Never raises."""
    try:
        data = await response.json()
    except Exception:
        data = None
    if isinstance(data, dict) and data.get("error"):
        return str(data["error"]), json.dumps(data)
    try:
        text = await response.text()
    except Exception:
        return DECODE_FAILURE_MARKER, ""
    return (truncate(text) or DECODE_FAILURE_MARKER), text


class LoginAutomator:
    """Logs a user in through the frontend's login form."""

    def __init__(
        self,
        base_url: str,
        routes: Optional[RouteSet] = None,
        selectors: Optional[LoginSelectors] = None,
        log_sink: Optional[LogSink] = None,
        screenshot_dir: Optional[Path] = None,
        session_cookie: Optional[str] = "id",
    ):
        self.base_url = base_url
        self.routes = routes or RouteSet()
        self.selectors = selectors or LoginSelectors()
        self.log_sink = log_sink
        self.screenshot_dir = Path(screenshot_dir) if screenshot_dir else None
        self.session_cookie = session_cookie
        self.form_timeout = constants.TIMEOUT_LOGIN_FORM_VISIBLE
        self.response_timeout = constants.TIMEOUT_LOGIN_RESPONSE
        self.auth_check_timeout = constants.TIMEOUT_AUTH_CHECK
        self.navigation_timeout = constants.TIMEOUT_LOGIN_NAVIGATION

    def _log(self, message: str, level: int = logging.INFO) -> None:
        logger.log(level, message)
        if self.log_sink is not None:
            self.log_sink.test(message)

    async def login(self, page: Page, username: str, password: str) -> LoginResult:
        self._log(f"Attempting login for user: {username}")
        try:
            await self._submit_credentials(page, username, password)
            await self._await_dashboard(page)
        except LoginError as exc:
            await self._diagnose(page, exc)
            self._log(f"ERROR: {exc}", logging.ERROR)
            raise
        except PlaywrightError as exc:
            # e.g. a disabled submit button times out inside page.click
            error = LoginRequestFailure(None, f"browser action failed on {page.url}: {truncate(str(exc))}")
            await self._diagnose(page, error)
            self._log(f"ERROR: {error}", logging.ERROR)
            raise error from exc

        cookie_present = await self._check_session_cookie(page)
        self._log(f"Browser login successful, now on {page.url}")
        return LoginResult(url=page.url, session_cookie_present=cookie_present)

    async def _submit_credentials(self, page: Page, username: str, password: str) -> None:
        routes, selectors = self.routes, self.selectors
        login_url = HarnessSettings.url(self.base_url, routes.login)
        await page.goto(login_url, wait_until="domcontentloaded")
        try:
            await page.wait_for_selector(selectors.username, state="visible", timeout=_ms(self.form_timeout))
        except PlaywrightTimeout:
            raise NavigationTimeout(f"{routes.login} form", page.url, self.form_timeout) from None

        # the login page redirects elsewhere when e.g. no users exist yet
        if not on_route(page.url, routes.login):
            raise UnexpectedRedirect(routes.login, page.url)

        await page.fill(selectors.username, username)
        await page.fill(selectors.password, password)

        loop = asyncio.get_running_loop()
        login_response: asyncio.Future = loop.create_future()
        auth_response: asyncio.Future = loop.create_future()

        def on_response(response: Response) -> None:
            method = response.request.method
            if not login_response.done() and routes.login in response.url and method == "POST":
                login_response.set_result(response)
            elif (
                not auth_response.done()
                and routes.auth_check in response.url
                and method == "GET"
                and response.status == 200
            ):
                auth_response.set_result(response)

        # listen before clicking so neither response can slip past
        page.on("response", on_response)
        try:
            await page.click(selectors.submit)
            try:
                response = await asyncio.wait_for(login_response, self.response_timeout)
            except asyncio.TimeoutError:
                raise LoginRequestFailure(
                    None, f"no response to POST {routes.login} within {self.response_timeout:g}s"
                ) from None
            await self._classify(response)
            await self._await_auth_check(page, auth_response)
        finally:
            page.remove_listener("response", on_response)

    async def _classify(self, response: Response) -> None:
        if response.status != 200:
            message, body = await describe_failed_response(response)
            raise LoginRequestFailure(response.status, message, body)

        try:
            data: Any = await response.json()
        except Exception:
            data = None
        if isinstance(data, dict) and data.get("success") is False:
            message = data.get("error") or data.get("message") or "login rejected"
            raise LoginRequestFailure(200, str(message), json.dumps(data))
        self._log(f"Login request accepted ({response.status})")

    async def _await_auth_check(self, page: Page, auth_response: asyncio.Future) -> None:
        try:
            await asyncio.wait_for(auth_response, self.auth_check_timeout)
        except asyncio.TimeoutError:
            if on_route(page.url, self.routes.login):
                raise AuthCheckTimeout(self.auth_check_timeout, page.url) from None
            self._log(
                f"Auth check not observed within {self.auth_check_timeout:g}s, "
                f"but page already navigated to {page.url}",
                logging.WARNING,
            )
            return
        self._log("Auth check succeeded")

    async def _await_dashboard(self, page: Page) -> None:
        dashboard = self.routes.dashboard
        try:
            await page.wait_for_url(re.compile(re.escape(dashboard)), timeout=_ms(self.navigation_timeout))
        except PlaywrightTimeout:
            raise NavigationTimeout(dashboard, page.url, self.navigation_timeout) from None

    async def _diagnose(self, page: Page, error: LoginError) -> None:
        banner: Optional[str] = None
        try:
            alert = page.locator(self.selectors.error_banner).first
            if await alert.is_visible():
                banner = (await alert.inner_text()).strip() or None
        except Exception as exc:
            logger.debug(f"Could not read error banner: {exc}")

        screenshot: Optional[str] = None
        if self.screenshot_dir is not None:
            stem = sanitize_test_name(self.log_sink.test_name) if self.log_sink else "login"
            path = self.screenshot_dir / f"{stem}-login-failure-{int(time.time() * 1000)}.png"
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                await page.screenshot(path=str(path), full_page=True)
                screenshot = str(path)
            except Exception as exc:
                logger.debug(f"Could not capture login failure screenshot: {exc}")

        error.attach_diagnostics(banner, screenshot)

    async def _check_session_cookie(self, page: Page) -> bool:
        try:
            cookies = await page.context.cookies()
        except Exception as exc:
            logger.debug(f"Could not read cookies: {exc}")
            cookies = []
        if self.session_cookie:
            present = any(cookie.get("name") == self.session_cookie for cookie in cookies)
        else:
            present = bool(cookies)
        if not present:
            # navigation already proved the session works
            self._log(
                f"WARNING: session cookie {self.session_cookie or '<any>'} not found after login",
                logging.WARNING,
            )
        return present
