"""In-memory batching buffer in front of the dispatch engine.

Records are held per type (track / engage / groups) and dispatched as one
batch when a type's buffer reaches ``max_size`` or when the interval since
the last time-based flush has elapsed.  Draining is a swap-and-clear under a
lock, so records appended while a flush is in flight land in the next batch.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, NamedTuple, Optional, Sequence

from relay.models import EventKind, RawRecord
from relay.schemas import SinkOutcome
from relay.utils.logger import logger
from relay.utils.utils import detach

__all__ = ["BatchBuffer", "QueuedRecord", "FlushHandler"]

FlushHandler = Callable[[List[RawRecord], EventKind, Mapping[str, str]], Awaitable[List[SinkOutcome]]]


class QueuedRecord(NamedTuple):
    record: RawRecord
    headers: Mapping[str, str]


class BatchBuffer:
    def __init__(
        self,
        flush: FlushHandler,
        *,
        max_size: int,
        interval: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._flush = flush
        self.max_size = max_size
        self.interval = interval
        self._clock = clock
        self._queues: Dict[EventKind, List[QueuedRecord]] = {kind: [] for kind in EventKind}
        self._lock = asyncio.Lock()
        self._flush_locks: Dict[EventKind, asyncio.Lock] = {kind: asyncio.Lock() for kind in EventKind}
        self.last_flush = clock()

    @property
    def enabled(self) -> bool:
        return self.max_size > 0

    def pending(self, kind: EventKind | str | None = None) -> int:
        if kind is None:
            return sum(len(q) for q in self._queues.values())
        return len(self._queues[EventKind(kind)])

    async def _drain(self, kind: EventKind) -> List[QueuedRecord]:
        async with self._lock:
            drained, self._queues[kind] = self._queues[kind], []
        return drained

    async def _dispatch(self, kind: EventKind, items: List[QueuedRecord]) -> List[SinkOutcome]:
        async with self._flush_locks[kind]:
            logger.info("[QUEUE] flushing %d %s records", len(items), kind.value)
            outcomes = await self._flush([i.record for i in items], kind, items[0].headers)
            logger.info("[QUEUE] flushed %d %s records", len(items), kind.value)
            return outcomes

    async def add(
        self,
        kind: EventKind | str,
        records: Sequence[RawRecord],
        headers: Optional[Mapping[str, str]] = None,
    ) -> Optional[List[SinkOutcome]]:
        """Buffer ``records``; returns the flush outcomes when this call filled the buffer."""

        kind = EventKind(kind)
        headers = dict(headers or {})
        drained: List[QueuedRecord] = []
        async with self._lock:
            queue = self._queues[kind]
            queue.extend(QueuedRecord(r, headers) for r in records)
            if len(queue) >= self.max_size:
                logger.info("[QUEUE] %s queue is full", kind.value)
                drained, self._queues[kind] = queue, []

        if drained:
            # drained records exist nowhere else; a cancelled caller must not lose them
            return await detach(self._dispatch(kind, drained))
        return None

    async def flush(self, kind: EventKind | str) -> Optional[List[SinkOutcome]]:
        kind = EventKind(kind)
        drained = await self._drain(kind)
        if not drained:
            return None
        return await detach(self._dispatch(kind, drained))

    async def check_interval(self, force: bool = False) -> Optional[Dict[EventKind, List[SinkOutcome]]]:
        """Flush every non-empty buffer when the interval has elapsed (or ``force``)."""

        now = self._clock()
        if not force and now - self.last_flush < self.interval:
            return None
        self.last_flush = now
        logger.info("[QUEUE] flushing all queues", extra={"forced": force})

        kinds = list(EventKind)
        results: List[Any] = await asyncio.gather(*(self.flush(kind) for kind in kinds))
        return {kind: outcomes for kind, outcomes in zip(kinds, results) if outcomes is not None}

    async def flush_all(self) -> Dict[EventKind, List[SinkOutcome]]:
        return await self.check_interval(force=True) or {}
