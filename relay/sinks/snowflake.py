from __future__ import annotations

"""Snowflake warehouse (snowflake-connector-python).

JSON columns are ``VARIANT``; rows are inserted with one multi-row
``INSERT ... SELECT ... FROM VALUES`` so ``PARSE_JSON`` can be applied to
bound parameters.
"""

import json
from typing import Any, Dict, List, Tuple

from starlette.concurrency import run_in_threadpool

from relay.models import DropResult, EventKind, Schema, SinkResult, TableNames
from relay.sinks.base import Sink
from relay.sinks.table_schemas import render_columns, render_type, schema_for
from relay.utils.logger import logger

__all__ = ["SnowflakeSink", "build_insert"]


def _bind(value: Any, column_type: str) -> Any:
    if value is None:
        return None
    if column_type == "VARIANT":
        return value if isinstance(value, str) else json.dumps(value, default=str)
    if isinstance(value, (dict, list)):
        return json.dumps(value, default=str)
    return value


def build_insert(table: str, rows: List[Dict[str, Any]], schema: Schema) -> Tuple[str, List[Any]]:
    """SQL plus flat parameter list (``pyformat`` style) for a multi-row insert."""

    types = [render_type(f.type, "snowflake") for f in schema]
    names = ", ".join(f.name for f in schema)
    select = ", ".join(
        f"PARSE_JSON(${i})" if t == "VARIANT" else f"${i}" for i, t in enumerate(types, start=1)
    )
    placeholders = "(" + ", ".join(["%s"] * len(schema)) + ")"
    values = ", ".join([placeholders] * len(rows))
    params = [_bind(row.get(f.name), t) for row in rows for f, t in zip(schema, types)]
    return f"INSERT INTO {table} ({names}) SELECT {select} FROM VALUES {values}", params


class SnowflakeSink(Sink):
    name = "snowflake"
    uses_schema = True

    _conn: Any = None

    # -- blocking helpers -----------------------------------------------------

    def _connect(self) -> bool:
        import snowflake.connector  # local import: optional extra

        creds = self.credentials
        self._conn = snowflake.connector.connect(
            account=creds["account"],
            user=creds["user"],
            password=creds["password"],
            database=creds["database"],
            schema=creds["schema"],
            warehouse=creds["warehouse"],
            role=creds["role"],
            client_session_keep_alive=True,
        )
        self._run("SELECT CURRENT_VERSION()")
        return True

    def _run(self, sql: str, params: Any = None) -> Tuple[int, List[Any]]:
        with self._conn.cursor() as cur:
            cur.execute(sql, params)
            rows = cur.fetchall() if cur.description else []
            return cur.rowcount or 0, rows

    def _table_exists(self, table: str) -> bool:
        _, rows = self._run("SHOW TABLES LIKE %s", (table.upper(),))
        return bool(rows)

    def _create_table(self, table: str, schema: Schema) -> None:
        columns = render_columns(schema, "snowflake", not_null=False)
        self._run(f"CREATE TABLE IF NOT EXISTS {table} ({columns})")

    # -- Sink hooks -------------------------------------------------------------

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        flags = {"client": False, "tables": False}
        try:
            flags["client"] = await run_in_threadpool(self._connect)
            ready = []
            for kind in EventKind:
                table = table_names.for_kind(kind)
                if not await run_in_threadpool(self._table_exists, table):
                    logger.info("%s table %s does not exist, creating", self.tag, table)
                    await run_in_threadpool(self._create_table, table, schema_for(kind))
                ready.append(await self._wait(lambda t=table: run_in_threadpool(self._table_exists, t)))
            flags["tables"] = all(ready)
        except Exception as exc:
            logger.error("%s setup failed: %s", self.tag, exc, extra={"sink": self.name})
        return flags

    async def _write_rows(self, rows: List[Dict[str, Any]], table: str, schema: Schema) -> SinkResult:
        if not rows:
            return SinkResult(status="success", inserted_rows=0, failed_rows=0)
        sql, params = build_insert(table, rows, schema)
        inserted, _ = await run_in_threadpool(self._run, sql, params)
        inserted = inserted or len(rows)
        return SinkResult(status="success", inserted_rows=inserted, failed_rows=len(rows) - inserted)

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        return await self._write_rows(rows, table, schema_for(kind))

    async def _drop(self, table_names: TableNames) -> DropResult:
        if self._conn is None:
            await run_in_threadpool(self._connect)
        for table in table_names.all():
            await run_in_threadpool(self._run, f"DROP TABLE IF EXISTS {table}")
        return DropResult(dropped=table_names.all())

    async def load(self, rows: List[Dict[str, Any]], table: str, schema: Schema) -> SinkResult:
        if self._conn is None:
            await run_in_threadpool(self._connect)
        await run_in_threadpool(self._create_table, table, schema)
        return await self._write_rows(list(rows), table, schema)

    async def close(self) -> None:
        if self._conn is not None:
            await run_in_threadpool(self._conn.close)
            self._conn = None
