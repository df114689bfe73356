"""Misc cross-cutting helpers."""

from __future__ import annotations

import asyncio
import secrets
import string
from datetime import datetime, timezone
from time import perf_counter
from typing import Any, Awaitable, Coroutine, Set, TypeVar

T = TypeVar("T")

_ALPHABET = string.ascii_lowercase + string.digits

# Writes that must finish even when the request awaiting them is cancelled
_DETACHED: Set["asyncio.Task[Any]"] = set()


def uid(length: int = 42) -> str:
    """Random lower-case alphanumeric id (object names in lakes)."""
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


def utc_now_iso() -> str:
    """ISO-8601 UTC timestamp with millisecond precision and a ``Z`` suffix."""
    return to_iso(datetime.now(timezone.utc))


def to_iso(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def today() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%d")


def elapsed_ms(start: float) -> int:
    """Milliseconds since a ``perf_counter()`` reading."""
    return int((perf_counter() - start) * 1000)


def detach(coro: Coroutine[Any, Any, T]) -> Awaitable[T]:
    """Run ``coro`` in its own task and await it through ``asyncio.shield``.

    Cancelling the caller (a client hanging up) abandons the result, not the
    work: the task keeps running and ``wait_detached`` can still collect it.
    """

    task = asyncio.ensure_future(coro)
    _DETACHED.add(task)
    task.add_done_callback(_DETACHED.discard)
    return asyncio.shield(task)


async def wait_detached() -> None:
    """Wait for every detached task started on the running loop."""

    loop = asyncio.get_running_loop()
    pending = [t for t in _DETACHED if t.get_loop() is loop and not t.done()]
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)
