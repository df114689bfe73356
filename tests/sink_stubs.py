"""In-memory destinations for tests."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

import httpx

from relay.models import DropResult, EventKind, SinkResult, TableNames
from relay.settings import Settings
from relay.sinks.base import Sink


async def no_sleep(_: float) -> None:
    return None


class StubSink:
    """Duck-typed sink: records calls, optionally raises."""

    def __init__(self, name: str, *, fail: Optional[BaseException] = None, wants_raw: bool = False):
        self.name = name
        self.fail = fail
        self.wants_raw = wants_raw
        self.calls: List[tuple[List[Any], EventKind, TableNames]] = []
        self.closed = False

    async def write(self, batch: Sequence[Any], kind: EventKind, table_names: TableNames) -> SinkResult:
        self.calls.append((list(batch), EventKind(kind), table_names))
        if self.fail is not None:
            raise self.fail
        return SinkResult(status="success", inserted_rows=len(batch), failed_rows=0)

    async def drop(self, table_names: TableNames) -> DropResult:
        if self.fail is not None:
            raise self.fail
        return DropResult(dropped=table_names.all())

    async def close(self) -> None:
        self.closed = True


class MemoryWarehouse(Sink):
    """Real ``Sink`` subclass storing partitioned rows per table."""

    name = "memory"
    uses_schema = True

    def __init__(
        self,
        settings: Settings,
        *,
        name: str = "memory",
        flags: Optional[Dict[str, bool]] = None,
        failures: Sequence[BaseException] = (),
    ):
        self.name = name  # type: ignore[misc]
        super().__init__(settings, sleep=no_sleep)
        self.setup_calls = 0
        self._flags = flags or {"client": True, "tables": True}
        self._failures = list(failures)
        self.insert_calls = 0
        self.tables: Dict[str, List[Dict[str, Any]]] = {}

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        self.setup_calls += 1
        for table in table_names.all():
            self.tables.setdefault(table, [])
        return dict(self._flags)

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        self.insert_calls += 1
        if self._failures:
            raise self._failures.pop(0)
        self.tables.setdefault(table, []).extend(rows)
        return SinkResult(status="success", inserted_rows=len(rows), failed_rows=0)

    async def _drop(self, table_names: TableNames) -> DropResult:
        for table in table_names.all():
            self.tables.pop(table, None)
        return DropResult(dropped=table_names.all())


def mixpanel_transport(seen: Optional[List[httpx.Request]] = None) -> httpx.MockTransport:
    """Mimic ``/track?verbose=1``: empty tokens are rejected with a 400 + error body."""

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)

        records = json.loads(request.content or b"[]")
        for record in records:
            token = (record.get("properties") or {}).get("token", record.get("$token"))
            if not token:
                return httpx.Response(400, json={"error": "token, missing or empty", "status": 0})
        return httpx.Response(200, json={"error": None, "status": 1})

    return httpx.MockTransport(handler)
