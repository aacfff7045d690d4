"""Retry with exponential backoff and error classification for browser actions."""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
import structlog

from core.config import RetryConfig
from core.errors import FrameworkError, TargetClosedError, WaitTimeoutError
from browser.timing import DelayProvider

logger = structlog.get_logger()

T = TypeVar("T")

# Playwright messages that mean the handle is dead, not busy
DESTROYED_MARKERS = (
    "target closed",
    "session closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "browser has disconnected",
    "context closed",
    "page closed",
)


@dataclass(frozen=True)
class RetryPolicy:
    """Parameters governing one retry call."""
    max_attempts: int = 3
    base_delay_ms: float = 1000.0
    max_jitter_ms: float = 1000.0

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            max_attempts=config.max_attempts,
            base_delay_ms=config.base_delay_ms,
            max_jitter_ms=config.max_jitter_ms,
        )

    def backoff_ms(self, failed_attempt: int, delays: DelayProvider) -> float:
        """Delay after the given (1-based) failed attempt."""
        delay = self.base_delay_ms * (2 ** (failed_attempt - 1))
        if self.max_jitter_ms > 0:
            delay += delays.uniform(0, self.max_jitter_ms)
        return delay


def is_target_closed(error: BaseException) -> bool:
    """True when the error says the page, context or browser is gone."""
    if isinstance(error, TargetClosedError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in DESTROYED_MARKERS)


def is_timeout(error: BaseException) -> bool:
    """True for asyncio and Playwright timeouts alike."""
    if isinstance(error, (WaitTimeoutError, asyncio.TimeoutError)):
        return True
    return type(error).__name__ == "TimeoutError"


def classify_error(error: BaseException) -> Exception:
    """Map a raw driver exception onto the engine error taxonomy."""
    if isinstance(error, FrameworkError):
        return error
    if is_target_closed(error):
        return TargetClosedError(str(error))
    if is_timeout(error):
        return WaitTimeoutError(str(error))
    return error


async def execute_with_retry(
    action: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    delays: Optional[DelayProvider] = None,
    label: str = "action",
) -> T:
    """
    Run an async action, retrying transient failures.

    Args:
        action: Zero-argument coroutine factory, called once per attempt
        policy: Retry parameters (defaults to 3 attempts, 1s base delay)
        delays: Source of jitter and sleeps
        label: Name used in log events

    Resource-destroyed and non-retryable framework errors are raised
    immediately; otherwise the last error is raised after max_attempts.
    """
    policy = policy or RetryPolicy()
    delays = delays or DelayProvider()
    attempts = 0

    while True:
        attempts += 1
        try:
            return await action()

        except Exception as e:
            error = classify_error(e)

            if isinstance(error, FrameworkError) and not error.retryable:
                logger.info(
                    "retry_aborted",
                    action=label,
                    attempt=attempts,
                    error_type=type(error).__name__,
                    error=str(error),
                )
                if error is e:
                    raise
                raise error from e

            if attempts >= policy.max_attempts:
                logger.warning("retry_exhausted", action=label, attempts=attempts, error=str(e))
                raise

            delay_ms = policy.backoff_ms(attempts, delays)
            logger.info(
                "retry_scheduled",
                action=label,
                attempt=attempts,
                delay_ms=round(delay_ms),
                error=str(e),
            )
            await delays.sleep(delay_ms)


def with_retry(
    policy: Optional[RetryPolicy] = None,
    delays: Optional[DelayProvider] = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator form of execute_with_retry for async functions."""

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await execute_with_retry(
                lambda: func(*args, **kwargs),
                policy=policy,
                delays=delays,
                label=func.__name__,
            )
        return wrapper

    return decorator
