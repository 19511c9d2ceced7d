"""Bounded retry with exponential backoff."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

import anyio

from e2e_harness.errors import NetworkError, ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_transient(error: BaseException) -> bool:
    """Connection failures and 5xx answers are worth another attempt."""
    return isinstance(error, (NetworkError, ServerError))


@dataclass(frozen=True)
class RetryPolicy:
    """Retry an async operation up to ``max_attempts`` times.

    The delay after failed attempt ``i`` (1-based) is ``base_delay * 2 ** (i - 1)``,
    so with the defaults attempts are spaced 100ms, then 200ms apart.
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    is_retryable: Callable[[BaseException], bool] = is_transient

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        if self.base_delay < 0:
            raise ValueError("base_delay must not be negative")

    def backoff(self, attempt: int) -> float:
        return self.base_delay * (2 ** (attempt - 1))

    async def run(self, operation: Callable[[int], Awaitable[T]], description: str = "operation") -> T:
        """Call ``operation(attempt)`` until it succeeds or the policy gives up.

        Non-retryable errors and the error of the final attempt propagate
        unchanged.
        """
        attempt = 1
        while True:
            try:
                return await operation(attempt)
            except Exception as exc:
                if attempt >= self.max_attempts or not self.is_retryable(exc):
                    raise
                delay = self.backoff(attempt)
                logger.warning(
                    f"{description} failed on attempt {attempt}/{self.max_attempts}: {exc}; "
                    f"retrying in {delay * 1000:.0f}ms"
                )
                await anyio.sleep(delay)
                attempt += 1
