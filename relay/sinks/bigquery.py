from __future__ import annotations

"""Google BigQuery warehouse (streaming inserts).

Tables are created on first use with the fixed layouts from
:mod:`relay.sinks.table_schemas`, day-partitioned and clustered per record
type.  Rows the API rejects individually are reported as a partial failure
rather than raised.
"""

import json
from typing import Any, Dict, List

from starlette.concurrency import run_in_threadpool

from relay.models import DropResult, EventKind, Schema, SinkResult, TableNames
from relay.sinks.base import Sink
from relay.sinks.google import google_credentials
from relay.sinks.table_schemas import (
    clustering_fields,
    partition_field,
    render_type,
    schema_for,
)
from relay.utils.logger import logger

__all__ = ["BigQuerySink", "summarize_insert_errors"]

JSON_TYPES = {"JSON", "ARRAY", "OBJECT"}


def summarize_insert_errors(total: int, errors: List[Dict[str, Any]]) -> SinkResult:
    """Fold ``insert_rows_json`` per-row errors into one result.

    Messages are de-duplicated keeping the order they first appeared in.
    """

    if not errors:
        return SinkResult(status="success", inserted_rows=total, failed_rows=0)

    failed = len({e.get("index", i) for i, e in enumerate(errors)})
    messages: List[str] = []
    for entry in errors:
        for err in entry.get("errors", []):
            msg = err.get("message") or err.get("reason") or "unknown error"
            if msg not in messages:
                messages.append(msg)
    return SinkResult(
        status="partial failure",
        inserted_rows=max(total - failed, 0),
        failed_rows=min(failed, total),
        errors=messages,
    )


class BigQuerySink(Sink):
    name = "bigquery"
    uses_schema = True

    _client: Any = None

    @property
    def dataset(self) -> str:
        return self.credentials["dataset"]

    def _table_id(self, table: str) -> str:
        return f"{self.credentials['project']}.{self.dataset}.{table}"

    # -- blocking helpers -----------------------------------------------------

    def _connect(self) -> bool:
        from google.cloud import bigquery  # local import: optional extra

        self._client = bigquery.Client(
            project=self.credentials["project"],
            credentials=google_credentials(self.credentials),
        )
        list(self._client.list_datasets(max_results=1))
        return True

    def _ensure_dataset(self) -> bool:
        from google.cloud import bigquery

        dataset = bigquery.Dataset(f"{self.credentials['project']}.{self.dataset}")
        self._client.create_dataset(dataset, exists_ok=True)
        return True

    def _bq_schema(self, schema: Schema) -> list:
        from google.cloud import bigquery

        return [
            bigquery.SchemaField(
                field.name,
                render_type(field.type, "bigquery"),
                mode=field.mode,
                description=field.description or None,
            )
            for field in schema
        ]

    def _create_table(self, table: str, kind: EventKind) -> None:
        from google.cloud import bigquery

        bq_table = bigquery.Table(self._table_id(table), schema=self._bq_schema(schema_for(kind)))
        bq_table.time_partitioning = bigquery.TimePartitioning(
            type_=bigquery.TimePartitioningType.DAY,
            field=partition_field(kind),
        )
        bq_table.clustering_fields = clustering_fields(kind)
        self._client.create_table(bq_table, exists_ok=True)

    def _table_exists(self, table: str) -> bool:
        from google.api_core.exceptions import NotFound

        try:
            self._client.get_table(self._table_id(table))
            return True
        except NotFound:
            return False

    # -- Sink hooks -------------------------------------------------------------

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        flags = {"client": False, "dataset": False, "tables": False}
        try:
            flags["client"] = await run_in_threadpool(self._connect)
            flags["dataset"] = await run_in_threadpool(self._ensure_dataset)
            ready = []
            for kind in EventKind:
                table = table_names.for_kind(kind)
                if not await run_in_threadpool(self._table_exists, table):
                    logger.info("%s table %s does not exist, creating", self.tag, table)
                    await run_in_threadpool(self._create_table, table, kind)
                ready.append(await self._wait(lambda t=table: run_in_threadpool(self._table_exists, t)))
            flags["tables"] = all(ready)
        except Exception as exc:
            logger.error("%s setup failed: %s", self.tag, exc, extra={"sink": self.name})
        return flags

    def _insert_rows(self, table: str, rows: List[Dict[str, Any]], json_columns: set[str]) -> List[Dict[str, Any]]:
        # JSON columns take serialized strings on the streaming API
        payload = [
            {k: json.dumps(v, default=str) if k in json_columns and v is not None else v for k, v in row.items()}
            for row in rows
        ]
        return self._client.insert_rows_json(self._table_id(table), payload)

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        json_columns = {f.name for f in schema_for(kind) if f.type in JSON_TYPES}
        errors = await run_in_threadpool(self._insert_rows, table, rows, json_columns)
        result = summarize_insert_errors(len(rows), errors)
        if result.status != "success":
            logger.warning("%s partial failure", self.tag, extra={"sink": self.name, "errors": result.errors})
        return result

    async def _drop(self, table_names: TableNames) -> DropResult:
        if self._client is None:
            await run_in_threadpool(self._connect)
        for table in table_names.all():
            await run_in_threadpool(self._client.delete_table, self._table_id(table), not_found_ok=True)
        return DropResult(dropped=table_names.all())

    async def load(self, rows: List[Dict[str, Any]], table: str, schema: Schema) -> SinkResult:
        from google.cloud import bigquery

        if self._client is None:
            await run_in_threadpool(self._connect)
            await run_in_threadpool(self._ensure_dataset)
        bq_table = bigquery.Table(self._table_id(table), schema=self._bq_schema(schema))
        await run_in_threadpool(self._client.create_table, bq_table, exists_ok=True)
        await self._wait(lambda: run_in_threadpool(self._table_exists, table))
        json_columns = {f.name for f in schema if f.type in JSON_TYPES}
        return await run_in_threadpool(
            lambda: summarize_insert_errors(len(rows), self._insert_rows(table, rows, json_columns))
        )
