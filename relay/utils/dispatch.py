"""Fan one batch out to every configured destination concurrently."""

from __future__ import annotations

import asyncio
from collections import Counter
from time import perf_counter
from typing import Any, List, Sequence

from relay.models import EventKind, RawRecord, SinkResult, TableNames
from relay.schemas import DropOutcome, SinkOutcome
from relay.utils.logger import logger
from relay.utils.transforms import tag_rows
from relay.utils.utils import detach, elapsed_ms

__all__ = ["dispatch", "drop_all"]


async def _run_sink(sink: Any, batch: Sequence[Any], kind: EventKind, table_names: TableNames) -> SinkOutcome:
    start = perf_counter()
    try:
        result = await sink.write(batch, kind, table_names)
        return SinkOutcome(name=sink.name, result=result)
    except Exception as exc:
        message = str(exc) or type(exc).__name__
        logger.error(
            "[%s] write failed: %s",
            sink.name.upper(),
            message,
            exc_info=True,
            extra={"sink": sink.name, "rows": len(batch)},
        )
        return SinkOutcome(
            name=sink.name,
            status=f"ERROR: {message}",
            result=SinkResult.failure(message, rows=len(batch), duration=elapsed_ms(start)),
        )


async def _fan_out(
    records: Sequence[RawRecord],
    flat: Sequence[Any],
    kind: EventKind,
    sinks: Sequence[Any],
    table_names: TableNames,
) -> List[SinkOutcome]:
    return list(
        await asyncio.gather(
            *(
                _run_sink(sink, records if getattr(sink, "wants_raw", False) else flat, kind, table_names)
                for sink in sinks
            )
        )
    )


async def dispatch(
    records: Sequence[RawRecord],
    kind: EventKind | str,
    sinks: Sequence[Any],
    table_names: TableNames,
) -> List[SinkOutcome]:
    """Write ``records`` to every sink at once; one failing sink never affects the others.

    The vendor pass-through sink (``wants_raw``) receives the records as the
    SDK sent them, every other sink the flattened rows.  The returned list
    follows the order of ``sinks``.
    """

    # unknown types fail here, before any sink is touched
    table_names.for_kind(kind)
    kind = EventKind(kind)

    tagged = tag_rows(records)
    flat = [t.row for t in tagged]
    shapes = Counter(t.kind.value for t in tagged)
    start = perf_counter()
    # a disconnecting client cancels this coroutine, never the writes themselves
    outcomes = await detach(_fan_out(records, flat, kind, sinks, table_names))
    logger.info(
        "dispatched %d %s records to %d sinks",
        len(records),
        kind.value,
        len(sinks),
        extra={"duration_ms": elapsed_ms(start), "sinks": [o.name for o in outcomes], "shapes": dict(shapes)},
    )
    return list(outcomes)


async def _drop_one(sink: Any, table_names: TableNames) -> DropOutcome:
    try:
        return DropOutcome(name=sink.name, result=await sink.drop(table_names))
    except Exception as exc:
        logger.error("[%s] drop failed: %s", sink.name.upper(), exc, extra={"sink": sink.name})
        return DropOutcome(name=sink.name, status=f"ERROR: {exc}")


async def drop_all(sinks: Sequence[Any], table_names: TableNames) -> List[DropOutcome]:
    return list(await asyncio.gather(*(_drop_one(sink, table_names) for sink in sinks)))
