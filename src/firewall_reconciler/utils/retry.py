"""Retry and timeout helpers for device adapter calls.

Transient adapter errors (and per-transition timeouts, which are converted
into transient errors) are retried with exponential backoff. Permanent
errors propagate immediately.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from ..errors import TransientAdapterError

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_EXCEPTIONS = (TransientAdapterError,)


@dataclass
class RetryPolicy:
    """Bounded exponential backoff settings."""
    max_attempts: int = 3
    min_wait: float = 1
    max_wait: float = 10
    multiplier: float = 1

    def retrying(self, exceptions: tuple = RETRYABLE_EXCEPTIONS) -> AsyncRetrying:
        """AsyncRetrying controller for an ``async for attempt in ...`` loop."""
        return AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential(multiplier=self.multiplier, min=self.min_wait, max=self.max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )

    async def call(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        exceptions: tuple = RETRYABLE_EXCEPTIONS,
        **kwargs: Any,
    ) -> T:
        """Await func(*args, **kwargs), retrying per this policy."""
        async for attempt in self.retrying(exceptions):
            with attempt:
                return await func(*args, **kwargs)
        raise AssertionError("unreachable: tenacity reraises on exhaustion")


async def with_timeout(
    awaitable: Awaitable[T],
    timeout: Optional[float],
    device_id: Optional[str] = None,
    operation: Optional[str] = None,
) -> T:
    """Await with a deadline; a timeout becomes a TransientAdapterError."""
    if not timeout:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout)
    except asyncio.TimeoutError:
        raise TransientAdapterError(
            f"{operation or 'operation'} timed out after {timeout}s",
            device_id=device_id,
            operation=operation,
        )
