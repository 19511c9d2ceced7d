"""Polling primitives shared by the process supervisors.

Everything here is a fixed-interval poll with an explicit deadline; nothing
blocks without a bound.
"""
from __future__ import annotations

import inspect
import logging
from typing import Awaitable, Callable, Optional, TypeVar, Union

import anyio
import httpx

from e2e_harness.constants import PROBE_REQUEST_TIMEOUT

logger = logging.getLogger(__name__)

T = TypeVar("T")

Predicate = Callable[[], Union[Optional[T], Awaitable[Optional[T]]]]


class PollTimeout(Exception):
    """Raised by ``wait_until`` when the deadline passes.

    Callers translate this into the domain error that fits their component.
    """

    def __init__(self, description: str, timeout: float, last_error: str = ""):
        self.description = description
        self.timeout = timeout
        self.last_error = last_error
        super().__init__(f"Timed out after {timeout:g}s waiting for {description}")


async def wait_until(
    predicate: Predicate,
    *,
    timeout: float,
    interval: float,
    description: str = "condition",
    on_tick: Callable[[float], None] | None = None,
):
    """Poll ``predicate`` until it returns a truthy value and return that value.

    ``predicate`` may be sync or async. Exceptions it raises propagate, which
    lets callers abort a wait early (e.g. when the watched process died).
    ``on_tick`` receives the elapsed seconds after each unsuccessful poll.
    """
    started = anyio.current_time()
    deadline = started + timeout
    while True:
        result = predicate()
        if inspect.isawaitable(result):
            result = await result
        if result:
            return result
        now = anyio.current_time()
        if now >= deadline:
            raise PollTimeout(description, timeout)
        if on_tick is not None:
            on_tick(now - started)
        await anyio.sleep(min(interval, max(deadline - now, 0)))


async def wait_for_http(
    url: str,
    *,
    timeout: float,
    interval: float,
    require_ok: bool = True,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.Response:
    """Poll ``url`` with GET until it answers.

    With ``require_ok`` only 2xx counts; otherwise any HTTP response does
    (used for dev servers that may 404 on ``/``). Raises ``PollTimeout``
    carrying the last error seen.
    """
    last_error = ""

    async with httpx.AsyncClient(timeout=PROBE_REQUEST_TIMEOUT, transport=transport) as client:

        async def probe() -> httpx.Response | None:
            nonlocal last_error
            try:
                response = await client.get(url)
            except httpx.HTTPError as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                return None
            if require_ok and not response.is_success:
                last_error = f"HTTP {response.status_code}"
                return None
            return response

        try:
            return await wait_until(probe, timeout=timeout, interval=interval, description=url)
        except PollTimeout as exc:
            exc.last_error = last_error
            raise
