"""Bounded retry with exponential backoff for source adapter calls."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from panel_harga.core.config import RetryConfig
from panel_harga.core.exceptions import ExhaustedRetries, FetchFailure

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay after the ``attempt``-th failure (0-based): min(cap, base * 2**attempt)."""
    return min(max_delay, base_delay * (2**attempt))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    *,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    retry_on: tuple[type[BaseException], ...] = (FetchFailure,),
    sleep: Sleeper = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Run ``operation`` up to ``max_attempts`` times.

    Every exception in ``retry_on`` counts as transient. Between attempt n
    and n+1 the call waits ``backoff_delay(n)``; there is no wait after the
    final attempt. Exceptions outside ``retry_on`` propagate immediately.

    Raises:
        ExhaustedRetries: wrapping the last transient error once every
            attempt has failed.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")

    last_exc: BaseException | None = None
    for attempt in range(max_attempts):
        try:
            return await operation()
        except retry_on as e:
            last_exc = e
            if attempt + 1 >= max_attempts:
                break
            delay = backoff_delay(attempt, base_delay, max_delay)
            logger.warning(
                "%s failed (attempt %d/%d): %s; retrying in %.1fs",
                label, attempt + 1, max_attempts, e, delay,
            )
            await sleep(delay)

    logger.error("%s failed after %d attempt(s): %s", label, max_attempts, last_exc)
    raise ExhaustedRetries(attempts=max_attempts, last_cause=last_exc) from last_exc


async def retry_with_policy(
    operation: Callable[[], Awaitable[T]],
    policy: RetryConfig,
    *,
    sleep: Sleeper = asyncio.sleep,
    label: str = "operation",
) -> T:
    """Apply a configured RetryConfig to ``operation``."""
    return await with_retry(
        operation,
        policy.max_attempts,
        base_delay=policy.base_delay,
        max_delay=policy.max_delay,
        sleep=sleep,
        label=label,
    )
