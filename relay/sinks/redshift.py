from __future__ import annotations

"""Amazon Redshift Serverless warehouse through the Redshift Data API.

The Data API is asynchronous: every statement is submitted, then polled until
it finishes.  JSON columns are ``SUPER`` and loaded with ``JSON_PARSE``.
"""

import json
import time
from typing import Any, Dict, List, Optional

from starlette.concurrency import run_in_threadpool

from relay.models import DropResult, EventKind, Schema, SinkResult, TableNames
from relay.sinks.base import Sink
from relay.sinks.table_schemas import render_columns, render_type, schema_for
from relay.utils.logger import logger

__all__ = ["RedshiftSink", "sql_literal", "StatementFailed"]

POLL_SECONDS = 0.5
STATEMENT_TIMEOUT = 300


class StatementFailed(RuntimeError):
    """A Data API statement ended FAILED or ABORTED."""


def _quote(text: str) -> str:
    return "'" + text.replace("\\", "\\\\").replace("'", "''") + "'"


def sql_literal(value: Any, column_type: str) -> str:
    """Render one value as a Redshift literal for a column of ``column_type``."""

    if value is None or value == "":
        return "NULL"
    column_type = column_type.upper()
    if column_type == "SUPER":
        text = value if isinstance(value, str) else json.dumps(value, default=str)
        return f"JSON_PARSE({_quote(text)})"
    if column_type == "BOOLEAN":
        return "TRUE" if str(value).lower() == "true" else "FALSE"
    if column_type in {"BIGINT", "DOUBLE PRECISION"} and not isinstance(value, bool):
        try:
            return str(int(value) if column_type == "BIGINT" else float(value))
        except (TypeError, ValueError):
            return "NULL"
    if isinstance(value, (dict, list)):
        return _quote(json.dumps(value, default=str))
    return _quote(str(value))


class RedshiftSink(Sink):
    name = "redshift"
    uses_schema = True

    _client: Any = None

    @property
    def schema_name(self) -> str:
        return self.credentials["schema_name"]

    def _qualified(self, table: str) -> str:
        return f"{self.schema_name}.{table}"

    # -- blocking helpers -----------------------------------------------------

    def _connect(self) -> bool:
        import boto3  # local import: optional extra

        self._client = boto3.client(
            "redshift-data",
            region_name=self.credentials["region"],
            aws_access_key_id=self.credentials["access_key_id"],
            aws_secret_access_key=self.credentials["secret_access_key"],
            aws_session_token=self.credentials.get("session_token"),
        )
        self._execute("SELECT 1")
        return True

    def _execute(self, sql: str) -> Dict[str, Any]:
        """Submit ``sql`` and block until the statement completes."""

        statement = self._client.execute_statement(
            Sql=sql,
            Database=self.credentials["database"],
            WorkgroupName=self.credentials["workgroup"],
        )
        deadline = time.monotonic() + STATEMENT_TIMEOUT
        while True:
            desc = self._client.describe_statement(Id=statement["Id"])
            status = desc["Status"]
            if status == "FINISHED":
                return desc
            if status in {"FAILED", "ABORTED"}:
                raise StatementFailed(desc.get("Error") or status)
            if time.monotonic() > deadline:
                raise TimeoutError(f"statement {statement['Id']} still {status}")
            time.sleep(POLL_SECONDS)

    def _fetch(self, sql: str) -> List[List[Any]]:
        desc = self._execute(sql)
        if not desc.get("HasResultSet"):
            return []
        result = self._client.get_statement_result(Id=desc["Id"])
        return [[next(iter(cell.values()), None) for cell in record] for record in result["Records"]]

    def _table_exists(self, table: str) -> bool:
        rows = self._fetch(
            "SELECT tablename FROM pg_catalog.pg_tables "
            f"WHERE schemaname = {_quote(self.schema_name)} AND tablename = {_quote(table)}"
        )
        return bool(rows)

    def _create_table(self, table: str, schema: Schema) -> None:
        columns = render_columns(schema, "redshift", not_null=False)
        self._execute(f"CREATE TABLE IF NOT EXISTS {self._qualified(table)} ({columns})")

    def _insert_sql(self, table: str, rows: List[Dict[str, Any]], schema: Schema) -> str:
        names = ", ".join(f.name for f in schema)
        types = [render_type(f.type, "redshift") for f in schema]
        values = ", ".join(
            "(" + ", ".join(sql_literal(row.get(f.name), t) for f, t in zip(schema, types)) + ")"
            for row in rows
        )
        return f"INSERT INTO {self._qualified(table)} ({names}) VALUES {values}"

    # -- Sink hooks -------------------------------------------------------------

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        flags = {"client": False, "schema": False, "tables": False}
        try:
            flags["client"] = await run_in_threadpool(self._connect)
            await run_in_threadpool(self._execute, f"CREATE SCHEMA IF NOT EXISTS {self.schema_name}")
            flags["schema"] = True
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

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        return await self._write_rows(rows, table, schema_for(kind))

    async def _write_rows(self, rows: List[Dict[str, Any]], table: str, schema: Schema) -> SinkResult:
        if not rows:
            return SinkResult(status="success", inserted_rows=0, failed_rows=0)
        desc = await run_in_threadpool(self._execute, self._insert_sql(table, rows, schema))
        inserted: Optional[int] = desc.get("ResultRows")
        if inserted is None or inserted < 0:
            inserted = len(rows)
        return SinkResult(status="success", inserted_rows=inserted, failed_rows=len(rows) - inserted)

    async def _drop(self, table_names: TableNames) -> DropResult:
        if self._client is None:
            await run_in_threadpool(self._connect)
        for table in table_names.all():
            await run_in_threadpool(self._execute, f"DROP TABLE IF EXISTS {self._qualified(table)}")
        return DropResult(dropped=table_names.all())

    async def load(self, rows: List[Dict[str, Any]], table: str, schema: Schema) -> SinkResult:
        if self._client is None:
            await run_in_threadpool(self._connect)
        await run_in_threadpool(self._create_table, table, schema)
        return await self._write_rows(list(rows), table, schema)
