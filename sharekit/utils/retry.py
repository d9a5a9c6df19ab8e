"""Retry/backoff utility shared by token refresh, media upload and posting."""
import asyncio
import logging
from typing import Awaitable, Callable, Optional, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    def __init__(self, *, max_attempts: int = 3, base_delay: float = 1.0) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay

    def delay_for(self, attempt: int) -> float:
        """Linear backoff: the n-th failed attempt waits base_delay * n"""
        return self.base_delay * attempt


def is_retryable_error(exc: BaseException) -> bool:
    """Default classifier: errors flagged retryable, plus raw transport failures"""
    if isinstance(exc, httpx.TransportError):
        return True
    return bool(getattr(exc, "retryable", False))


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    policy: Optional[RetryPolicy] = None,
    is_retryable: Callable[[BaseException], bool] = is_retryable_error,
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    description: str = "operation",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``func`` until it succeeds, a fatal error occurs, or attempts run out

    Args:
        func: Zero-argument coroutine factory, called once per attempt
        policy: Attempt bound and backoff (defaults to 3 attempts, 1s base)
        is_retryable: Predicate deciding whether an error may be retried
        on_retry: Called with (attempt, error) before each backoff sleep
        description: Used in log lines
        sleep: Awaitable sleep, injectable for tests

    Raises:
        The last error once it is fatal or attempts are exhausted
    """
    config = policy or RetryPolicy()
    attempt = 0

    while True:
        attempt += 1
        try:
            return await func()
        except Exception as exc:
            if not is_retryable(exc):
                raise
            if attempt >= config.max_attempts:
                logger.warning(
                    f"{description} failed after {attempt} attempt(s): {type(exc).__name__}: {exc}"
                )
                raise
            delay = config.delay_for(attempt)
            logger.info(
                f"{description} attempt {attempt}/{config.max_attempts} failed "
                f"({type(exc).__name__}: {exc}), retrying in {delay:.1f}s"
            )
            if on_retry is not None:
                on_retry(attempt, exc)
            await sleep(delay)


__all__ = ["RetryPolicy", "is_retryable_error", "retry_async"]
