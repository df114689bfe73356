"""Common machinery every destination adapter shares.

An adapter only implements ``_setup`` (one-time readiness checks, returning
named flags), ``_insert`` (one attempt at writing a prepared batch) and
``_drop``.  The init latch, table routing, schema partitioning, retries and
timing live here.
"""

from __future__ import annotations

import asyncio
import random
from abc import ABC, abstractmethod
from time import perf_counter
from typing import Any, Awaitable, Callable, ClassVar, Dict, List, Optional, Sequence

from relay.errors import SinkNotReadyError
from relay.models import DropResult, EventKind, FlatRow, Schema, SinkResult, TableNames
from relay.settings import Settings
from relay.sinks.table_schemas import schema_for
from relay.utils.logger import logger
from relay.utils.retries import with_retry
from relay.utils.schema_mapper import partition_rows
from relay.utils.utils import elapsed_ms

__all__ = ["Sink", "wait_until_ready", "Sleep"]

Sleep = Callable[[float], Awaitable[Any]]

READY_ATTEMPTS = 20
READY_JITTER = (1.0, 5.0)


async def wait_until_ready(
    check: Callable[[], Awaitable[bool]],
    *,
    attempts: int = READY_ATTEMPTS,
    jitter: tuple[float, float] = READY_JITTER,
    sleep: Sleep = asyncio.sleep,
    label: str = "",
) -> bool:
    """Poll ``check`` until it returns true, sleeping a random 1-5s in between."""

    for attempt in range(1, attempts + 1):
        if await check():
            logger.info("%s ready on attempt %d", label, attempt)
            return True
        if attempt < attempts:
            delay = random.uniform(*jitter)
            logger.info("%s not ready, sleeping %.1fs (attempt %d)", label, delay, attempt)
            await sleep(delay)
    logger.warning("%s not ready after %d attempts", label, attempts)
    return False


class Sink(ABC):
    """One external destination (warehouse, lake or analytics vendor)."""

    name: ClassVar[str] = ""
    # Vendor pass-through receives the SDK's nested records instead of flat rows
    wants_raw: ClassVar[bool] = False
    # Warehouses split rows into fixed columns + ``properties``
    uses_schema: ClassVar[bool] = False

    def __init__(self, settings: Settings, *, sleep: Sleep = asyncio.sleep):
        self.settings = settings
        self.credentials = settings.credentials(self.name)
        self.max_retries = settings.max_retries
        self._sleep = sleep
        self._init_lock = asyncio.Lock()
        self._ready = False
        self.flags: Dict[str, bool] = {}

    @property
    def tag(self) -> str:
        return f"[{self.name.upper()}]"

    def __repr__(self) -> str:
        return f"<{type(self).__name__} ready={self._ready}>"

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def init(self, table_names: TableNames) -> Dict[str, bool]:
        """Run readiness checks once; concurrent first callers wait on the same run."""

        if self._ready:
            return dict(self.flags)
        async with self._init_lock:
            if not self._ready:
                logger.info("%s initializing", self.tag, extra={"sink": self.name})
                self.flags = await self._setup(table_names)
                if not all(self.flags.values()):
                    raise SinkNotReadyError(self.name, self.flags)
                self._ready = True
                logger.info("%s ready", self.tag, extra={"sink": self.name, "flags": self.flags})
        return dict(self.flags)

    async def close(self) -> None:
        """Release clients; overridden by adapters holding connections."""

    # ------------------------------------------------------------------
    # Write path
    # ------------------------------------------------------------------

    def prepare(self, batch: Sequence[FlatRow], kind: EventKind | str) -> List[Dict[str, Any]]:
        if self.uses_schema:
            return partition_rows(batch, schema_for(kind))
        return [dict(row) for row in batch]

    async def write(
        self,
        batch: Sequence[FlatRow],
        kind: EventKind | str,
        table_names: TableNames,
    ) -> SinkResult:
        start = perf_counter()
        table = table_names.for_kind(kind)
        kind = EventKind(kind)
        if not batch:
            return SinkResult(status="success", inserted_rows=0, failed_rows=0, duration=elapsed_ms(start))
        await self.init(table_names)

        rows = self.prepare(batch, kind)
        result = await with_retry(
            lambda: self._insert(rows, table, kind),
            max_retries=self.max_retries,
            sleep=self._sleep,
            label=self.tag,
        )
        result.duration = elapsed_ms(start)
        logger.info(
            "%s wrote %d rows to %s",
            self.tag,
            result.inserted_rows or 0,
            table,
            extra={"sink": self.name, "rows": len(rows), "status": result.status, "duration_ms": result.duration},
        )
        return result

    async def drop(self, table_names: TableNames) -> DropResult:
        """Delete every table/object this sink wrote.  Non-production only."""
        result = await self._drop(table_names)
        self._ready = False
        logger.warning("%s dropped %s", self.tag, result.dropped, extra={"sink": self.name})
        return result

    async def load(self, rows: Sequence[FlatRow], table: str, schema: Schema) -> SinkResult:
        """Ad hoc load into an arbitrary table using an inferred schema."""
        raise NotImplementedError(f"{self.name} does not support ad hoc loads")

    # ------------------------------------------------------------------
    # Adapter hooks
    # ------------------------------------------------------------------

    @abstractmethod
    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        """Verify credentials and create whatever is missing; return named flags."""

    @abstractmethod
    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        """One attempt at writing ``rows``; raise to let the retry wrapper decide."""

    @abstractmethod
    async def _drop(self, table_names: TableNames) -> DropResult:
        ...

    def _wait(self, check: Callable[[], Awaitable[bool]], label: Optional[str] = None) -> Awaitable[bool]:
        return wait_until_ready(check, sleep=self._sleep, label=label or self.tag)
