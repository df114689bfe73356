"""Object-store destinations.

Each batch becomes one gzip-compressed newline-delimited JSON object at
``<prefix>/<YYYY-MM-DD>_<id>.json.gz`` where the prefix is the table name for
the record type.  Concrete stores implement a handful of blocking primitives;
they run on Starlette's thread pool so the event loop never blocks.
"""

from __future__ import annotations

import gzip
import json
from abc import abstractmethod
from typing import Any, Dict, Iterable, List, Optional

from starlette.concurrency import run_in_threadpool

from relay.models import DropResult, EventKind, SinkResult, TableNames
from relay.sinks.base import Sink
from relay.utils.logger import logger
from relay.utils.utils import today, uid

__all__ = ["LakeSink", "gzip_ndjson", "object_key"]

PROBE_KEY = "relay-permission-check.txt"
PROBE_BODY = b"hello!"


def gzip_ndjson(rows: Iterable[Dict[str, Any]]) -> bytes:
    payload = "\n".join(json.dumps(row, default=str) for row in rows)
    return gzip.compress(payload.encode("utf-8"))


def object_key(prefix: str, day: Optional[str] = None) -> str:
    if not prefix:
        raise ValueError("prefix name not provided")
    return f"{prefix.rstrip('/')}/{day or today()}_{uid(42)}.json.gz"


class LakeSink(Sink):
    """Template for S3 / GCS / Azure Blob."""

    # -- blocking primitives ------------------------------------------------

    @abstractmethod
    def _connect(self) -> None:
        """Build the SDK client and make one authenticated call."""

    @abstractmethod
    def _ensure_container(self) -> bool:
        """Verify the bucket/container exists, creating it if missing."""

    @abstractmethod
    def _put(self, key: str, body: bytes, *, gzipped: bool = False) -> None:
        ...

    @abstractmethod
    def _get(self, key: str) -> bytes:
        ...

    @abstractmethod
    def _list(self) -> List[str]:
        ...

    @abstractmethod
    def _delete(self, keys: List[str]) -> None:
        ...

    # -- Sink hooks -----------------------------------------------------------

    def _probe(self) -> bool:
        """Write, read back and delete a small object."""
        self._put(PROBE_KEY, PROBE_BODY)
        matches = self._get(PROBE_KEY) == PROBE_BODY
        self._delete([PROBE_KEY])
        return matches

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        flags = {"client": False, "container": False, "read_write": False}
        try:
            await run_in_threadpool(self._connect)
            flags["client"] = True
            flags["container"] = await run_in_threadpool(self._ensure_container)
            if flags["container"]:
                flags["read_write"] = await run_in_threadpool(self._probe)
        except Exception as exc:
            logger.error("%s setup failed: %s", self.tag, exc, extra={"sink": self.name})
        return flags

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        key = object_key(table)
        await run_in_threadpool(self._put, key, gzip_ndjson(rows), gzipped=True)
        logger.info("%s uploaded %s", self.tag, key, extra={"sink": self.name, "rows": len(rows)})
        return SinkResult(status="success", inserted_rows=len(rows), failed_rows=0)

    async def _drop(self, table_names: TableNames) -> DropResult:
        prefixes = table_names.all()
        keys = [k for k in await run_in_threadpool(self._list) if any(p in k for p in prefixes)]
        if keys:
            await run_in_threadpool(self._delete, keys)
        return DropResult(dropped=keys, message=f"deleted {len(keys)} objects")
