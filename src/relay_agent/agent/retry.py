"""Exponential backoff for the model call boundary."""

from __future__ import annotations

import asyncio
import inspect
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, TypeVar

from relay_agent.errors import ErrorCategory, LLMError

if TYPE_CHECKING:
    from relay_agent.config import Config

T = TypeVar("T")

DEFAULT_RETRYABLE = frozenset({
    ErrorCategory.NETWORK,
    ErrorCategory.TIMEOUT,
    ErrorCategory.RATE_LIMIT,
    ErrorCategory.SERVER,
})

RetryCallback = Callable[[int, float, BaseException], Any]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry."""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    retryable: frozenset[ErrorCategory] = field(default=DEFAULT_RETRYABLE)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (0 for the first retry)."""
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def is_retryable(self, error: BaseException) -> bool:
        return classify_error(error) in self.retryable

    @classmethod
    def from_config(cls, config: Config) -> RetryPolicy:
        names = config.get("retryable_errors")
        retryable = (
            frozenset(ErrorCategory(name) for name in names)
            if names is not None
            else DEFAULT_RETRYABLE
        )
        return cls(
            max_attempts=config.get("retry_max_attempts", 3),
            base_delay=config.get("retry_base_delay", 1.0),
            max_delay=config.get("retry_max_delay", 30.0),
            retryable=retryable,
        )


def classify_error(error: BaseException) -> ErrorCategory:
    """Map an exception onto a retry category."""
    if isinstance(error, LLMError):
        return error.category
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return ErrorCategory.TIMEOUT
    if isinstance(error, (ConnectionError, socket.gaierror, socket.herror)):
        return ErrorCategory.NETWORK
    return ErrorCategory.UNKNOWN


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    on_retry: RetryCallback | None = None,
) -> T:
    """Run ``operation`` until it succeeds or the policy gives up.

    Non-retryable errors are re-raised immediately. When every attempt
    fails the last error is re-raised.

    Args:
        operation: Zero-argument coroutine factory, called once per attempt
        policy: Retry policy
        sleep: Awaitable delay, injectable for tests
        on_retry: Called with (attempt number, delay, error) before waiting
    """
    for attempt in range(policy.max_attempts):
        try:
            return await operation()
        except Exception as error:
            last_attempt = attempt + 1 >= policy.max_attempts
            if last_attempt or not policy.is_retryable(error):
                raise

            delay = policy.delay_for(attempt)
            if on_retry is not None:
                outcome = on_retry(attempt + 1, delay, error)
                if inspect.isawaitable(outcome):
                    await outcome
            await sleep(delay)

    raise AssertionError("unreachable")  # pragma: no cover
