"""Retry wrapper around sink writes.

Only the write itself is retried.  Readiness checks have their own polling
loop in :mod:`relay.sinks.base`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional, TypeVar

import httpx

from relay.errors import RetriesExhaustedError
from relay.utils.logger import logger

__all__ = [
    "DEFAULT_MAX_RETRIES",
    "RETRYABLE_MESSAGES",
    "RETRYABLE_STATUS_CODES",
    "is_retryable",
    "default_backoff",
    "with_retry",
]

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 5
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0

# Matched case-insensitively against the error message and class name
RETRYABLE_MESSAGES = ("tablelocked", "table locked", "locknotavailable", "lock not available", "network")
RETRYABLE_STATUS_CODES = frozenset({429, 500, 503})


def _status_code(exc: BaseException) -> Optional[int]:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code
    for attr in ("status_code", "code", "status"):
        value = getattr(exc, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)
    return None


def is_retryable(exc: BaseException) -> bool:
    """Transient failures worth another attempt: locks, network trouble, 429/500/503."""

    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return True
    if _status_code(exc) in RETRYABLE_STATUS_CODES:
        return True
    haystack = f"{type(exc).__name__} {exc}".lower()
    return any(marker in haystack for marker in RETRYABLE_MESSAGES)


def default_backoff(attempt: int) -> float:
    """Seconds to wait after the ``attempt``-th failure (1s, 2s, 4s … capped at 30s)."""
    return min(BASE_DELAY_SECONDS * 2 ** max(attempt - 1, 0), MAX_DELAY_SECONDS)


async def with_retry(
    op: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    classify: Callable[[BaseException], bool] = is_retryable,
    backoff: Callable[[int], float] = default_backoff,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    label: str = "",
) -> T:
    """Await ``op()`` until it succeeds, a fatal error occurs or the budget runs out.

    Fatal errors propagate untouched after a single call.  When every attempt
    fails with a retryable error, :class:`RetriesExhaustedError` is raised with
    the last failure as its ``__cause__``.
    """

    attempts = max(max_retries, 1)
    for attempt in range(1, attempts + 1):
        try:
            return await op()
        except Exception as exc:
            if not classify(exc):
                raise
            if attempt == attempts:
                logger.error(
                    "%s retries exhausted",
                    label or "write",
                    extra={"attempts": attempts, "error": str(exc)},
                )
                raise RetriesExhaustedError(attempts, exc) from exc
            delay = backoff(attempt)
            logger.warning(
                "%s attempt %d failed, retrying in %.1fs",
                label or "write",
                attempt,
                delay,
                extra={"error": str(exc)},
            )
            await sleep(delay)

    raise RuntimeError("unreachable")  # pragma: no cover
