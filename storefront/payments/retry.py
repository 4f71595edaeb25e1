"""Backoff for idempotent provider reads.

A read is retried when the provider answers 429/5xx or the connection drops
before a response. Retry-After is honoured up to ``max_delay``. Payment
creation and refunds are never wrapped: replaying them could charge or
refund twice.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable

import httpx

logger = logging.getLogger(__name__)

TRANSIENT_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def _transient_reason(exc: Exception) -> str | None:
    """Short label for a retryable failure, None when the error is final."""
    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        return f"HTTP {status}" if status in TRANSIENT_STATUS_CODES else None
    if isinstance(exc, (httpx.ConnectError, httpx.ReadTimeout)):
        return type(exc).__name__
    return None


def _retry_after(exc: Exception) -> float | None:
    if not isinstance(exc, httpx.HTTPStatusError):
        return None
    try:
        return float(exc.response.headers["Retry-After"])
    except (KeyError, ValueError):
        return None


def backoff_delay(
    attempt: int, base_delay: float, max_delay: float, retry_after: float | None = None
) -> float:
    """Seconds to wait before retry ``attempt`` (0-based)."""
    if retry_after is not None:
        return min(max(retry_after, 0.0), max_delay)
    delay = min(base_delay * 2**attempt, max_delay)
    # +/-25% jitter, still capped
    return min(delay * random.uniform(0.75, 1.25), max_delay)


def retry_with_backoff(
    max_retries: int = 2, base_delay: float = 0.5, max_delay: float = 5.0
) -> Callable:
    """Decorator: retry an async provider read on transient failures."""

    def decorator(fn: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
        @functools.wraps(fn)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            attempt = 0
            while True:
                try:
                    return await fn(*args, **kwargs)
                except httpx.HTTPError as e:
                    reason = _transient_reason(e)
                    if reason is None or attempt >= max_retries:
                        raise
                    delay = backoff_delay(attempt, base_delay, max_delay, _retry_after(e))
                    attempt += 1
                    logger.warning(
                        "Retry %d/%d for %s (%s), waiting %.2fs",
                        attempt,
                        max_retries,
                        fn.__name__,
                        reason,
                        delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator
