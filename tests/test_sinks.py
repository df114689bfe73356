import asyncio
import gzip
import json

import httpx
import pytest

from relay.errors import InvalidRecordTypeError, RetriesExhaustedError, SinkNotReadyError
from relay.models import EventKind, SchemaField, TableNames
from relay.sinks import SINK_REGISTRY, build_sinks
from relay.sinks.base import wait_until_ready
from relay.sinks.bigquery import summarize_insert_errors
from relay.sinks.lake import gzip_ndjson, object_key
from relay.sinks.mixpanel import MixpanelSink, base_url
from relay.sinks.redshift import sql_literal
from relay.sinks.snowflake import build_insert
from relay.sinks.table_schemas import (
    EVENTS_SCHEMA,
    clustering_fields,
    partition_field,
    render_columns,
    render_type,
    schema_for,
)
from tests.sink_stubs import MemoryWarehouse, mixpanel_transport, no_sleep

TABLES = TableNames()
ROW = {"event": "signup", "distinct_id": "u1", "plan": "pro"}


class TableLockedError(Exception):
    pass


# ---------------------------------------------------------------------------
# Sink base: init latch, write template, retries
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_init_runs_setup_once_under_concurrency(make_settings):
    sink = MemoryWarehouse(make_settings())
    results = await asyncio.gather(*(sink.init(TABLES) for _ in range(5)))
    assert sink.setup_calls == 1
    assert all(r == {"client": True, "tables": True} for r in results)


@pytest.mark.asyncio
async def test_failed_readiness_raises_and_retries_next_time(make_settings):
    sink = MemoryWarehouse(make_settings(), flags={"client": True, "tables": False})
    with pytest.raises(SinkNotReadyError, match="tables"):
        await sink.init(TABLES)
    with pytest.raises(SinkNotReadyError):
        await sink.write([ROW], "track", TABLES)
    assert sink.setup_calls == 2


@pytest.mark.asyncio
async def test_write_partitions_rows_into_the_routed_table(make_settings):
    sink = MemoryWarehouse(make_settings())
    result = await sink.write([ROW], EventKind.track, TABLES)
    assert result.status == "success"
    assert (result.inserted_rows, result.failed_rows) == (1, 0)
    assert result.duration >= 0
    stored = sink.tables["events"][0]
    assert stored["event"] == "signup"
    assert stored["properties"] == {"plan": "pro"}
    assert "insert_time" in stored


@pytest.mark.asyncio
async def test_write_routes_profiles_to_user_and_group_tables(make_settings):
    sink = MemoryWarehouse(make_settings())
    await sink.write([{"distinct_id": "u1", "operation": "$set"}], "engage", TABLES)
    await sink.write([{"group_key": "co", "group_id": "acme", "operation": "$set"}], "groups", TABLES)
    assert len(sink.tables["users"]) == 1
    assert sink.tables["groups"][0]["group_id"] == "acme"


@pytest.mark.asyncio
async def test_empty_batch_touches_nothing(make_settings):
    sink = MemoryWarehouse(make_settings())
    result = await sink.write([], "track", TABLES)
    assert result.inserted_rows == 0
    assert sink.setup_calls == 0


@pytest.mark.asyncio
async def test_invalid_type_is_fatal(make_settings):
    sink = MemoryWarehouse(make_settings())
    with pytest.raises(InvalidRecordTypeError):
        await sink.write([ROW], "alias", TABLES)
    assert sink.insert_calls == 0


@pytest.mark.asyncio
async def test_transient_insert_errors_are_retried(make_settings):
    sink = MemoryWarehouse(make_settings(), failures=[TableLockedError("locked"), TableLockedError("locked")])
    result = await sink.write([ROW], "track", TABLES)
    assert result.status == "success"
    assert sink.insert_calls == 3


@pytest.mark.asyncio
async def test_retry_budget_comes_from_settings(make_settings):
    errors = [TableLockedError("locked")] * 10
    sink = MemoryWarehouse(make_settings(MAX_RETRIES=2), failures=errors)
    with pytest.raises(RetriesExhaustedError, match="after 2 attempts"):
        await sink.write([ROW], "track", TABLES)
    assert sink.insert_calls == 2


@pytest.mark.asyncio
async def test_drop_resets_readiness(make_settings):
    sink = MemoryWarehouse(make_settings())
    await sink.write([ROW], "track", TABLES)
    result = await sink.drop(TABLES)
    assert result.dropped == ["events", "users", "groups"]
    await sink.write([ROW], "track", TABLES)
    assert sink.setup_calls == 2


@pytest.mark.asyncio
async def test_wait_until_ready_polls_with_jitter():
    answers = iter([False, False, True])
    delays = []

    async def check():
        return next(answers)

    async def sleep(d):
        delays.append(d)

    assert await wait_until_ready(check, sleep=sleep)
    assert len(delays) == 2
    assert all(1 <= d <= 5 for d in delays)


@pytest.mark.asyncio
async def test_wait_until_ready_gives_up():
    calls = []

    async def check():
        calls.append(1)
        return False

    assert not await wait_until_ready(check, attempts=4, sleep=no_sleep)
    assert len(calls) == 4


# ---------------------------------------------------------------------------
# Mixpanel
# ---------------------------------------------------------------------------

def test_mixpanel_region_url():
    assert base_url("US") == "https://api.mixpanel.com"
    assert base_url("eu") == "https://api-eu.mixpanel.com"


@pytest.mark.asyncio
async def test_mixpanel_forwards_raw_records(make_settings):
    seen = []
    sink = MixpanelSink(make_settings(MIXPANEL_REGION="EU"), transport=mixpanel_transport(seen))
    records = [{"event": "x", "properties": {"token": "abc", "$os": "mac"}}]
    result = await sink.write(records, "track", TABLES)
    assert result.status == "success"
    assert result.inserted_rows == 1
    request = seen[0]
    assert request.url.host == "api-eu.mixpanel.com"
    assert request.url.path == "/track"
    assert request.url.params["verbose"] == "1"
    assert json.loads(request.content) == records


@pytest.mark.asyncio
async def test_mixpanel_vendor_error_is_a_result_not_an_exception(make_settings):
    sink = MixpanelSink(make_settings(), transport=mixpanel_transport())
    result = await sink.write([{"event": "x", "properties": {"token": ""}}], "track", TABLES)
    assert result.status == "error"
    assert result.error_message == "token, missing or empty"
    assert (result.inserted_rows, result.failed_rows) == (0, 1)


@pytest.mark.asyncio
async def test_mixpanel_error_status_without_error_body_is_a_failure(make_settings):
    sink = MixpanelSink(
        make_settings(),
        transport=httpx.MockTransport(lambda request: httpx.Response(413, json={"status": 0})),
    )
    result = await sink.write([{"event": "x", "properties": {"token": "t"}}], "track", TABLES)
    assert result.status == "error"
    assert result.error_message == "HTTP 413"
    assert (result.inserted_rows, result.failed_rows) == (0, 1)


@pytest.mark.asyncio
async def test_mixpanel_throttling_is_retried(make_settings):
    responses = iter([httpx.Response(429), httpx.Response(200, json={"error": None, "status": 1})])
    sink = MixpanelSink(
        make_settings(),
        transport=httpx.MockTransport(lambda request: next(responses)),
        sleep=no_sleep,
    )
    result = await sink.write([{"$token": "t", "$distinct_id": "u", "$set": {}}], "engage", TABLES)
    assert result.status == "success"


@pytest.mark.asyncio
async def test_mixpanel_has_nothing_to_drop(make_settings):
    sink = MixpanelSink(make_settings(), transport=mixpanel_transport())
    assert (await sink.drop(TABLES)).message == "nothing to drop"


# ---------------------------------------------------------------------------
# Lakes
# ---------------------------------------------------------------------------

def test_gzip_ndjson_round_trip():
    rows = [{"a": 1}, {"b": [1, 2]}]
    lines = gzip.decompress(gzip_ndjson(rows)).decode().split("\n")
    assert [json.loads(line) for line in lines] == rows


def test_object_key_layout():
    key = object_key("events/", day="2024-05-06")
    prefix, name = key.split("/")
    assert prefix == "events"
    assert name.startswith("2024-05-06_") and name.endswith(".json.gz")
    assert len(name) == len("2024-05-06_") + 42 + len(".json.gz")


def test_object_key_needs_prefix():
    with pytest.raises(ValueError):
        object_key("")


# ---------------------------------------------------------------------------
# Warehouses: schemas and wire helpers
# ---------------------------------------------------------------------------

def test_static_schemas_and_layout():
    assert [f.name for f in schema_for("track")][:3] == ["event", "event_time", "insert_time"]
    assert partition_field("track") == "event_time"
    assert partition_field("engage") == "insert_time"
    assert clustering_fields("groups") == ["group_id"]
    with pytest.raises(InvalidRecordTypeError):
        schema_for("alias")


def test_dialect_rendering():
    assert render_type("JSON", "bigquery") == "JSON"
    assert render_type("JSON", "redshift") == "SUPER"
    assert render_type("JSON", "snowflake") == "VARIANT"
    assert render_type("STRING", "bigquery") == "STRING"
    cols = render_columns(EVENTS_SCHEMA[:2], "redshift")
    assert cols == "event VARCHAR(65535) NOT NULL, event_time TIMESTAMP"


def test_bigquery_partial_failure_summary():
    errors = [
        {"index": 0, "errors": [{"message": "no such field: foo"}]},
        {"index": 2, "errors": [{"message": "no such field: foo"}, {"message": "missing required field: event"}]},
    ]
    result = summarize_insert_errors(5, errors)
    assert result.status == "partial failure"
    assert (result.inserted_rows, result.failed_rows) == (3, 2)
    assert result.errors == ["no such field: foo", "missing required field: event"]
    assert summarize_insert_errors(4, []).status == "success"


def test_redshift_literals():
    assert sql_literal(None, "VARCHAR(65535)") == "NULL"
    assert sql_literal("", "VARCHAR(65535)") == "NULL"
    assert sql_literal("O'Brien", "VARCHAR(65535)") == "'O''Brien'"
    assert sql_literal({"a": "b"}, "SUPER") == "JSON_PARSE('{\"a\": \"b\"}')"
    assert sql_literal("true", "BOOLEAN") == "TRUE"
    assert sql_literal("12", "BIGINT") == "12"


def test_snowflake_insert_statement():
    schema = [SchemaField(name="event", type="STRING"), SchemaField(name="properties", type="JSON")]
    sql, params = build_insert("events", [{"event": "a", "properties": {"x": 1}}, {"event": "b"}], schema)
    assert sql == (
        "INSERT INTO events (event, properties) SELECT $1, PARSE_JSON($2) "
        "FROM VALUES (%s, %s), (%s, %s)"
    )
    assert params == ["a", '{"x": 1}', "b", None]


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

def test_registry_covers_every_destination():
    assert set(SINK_REGISTRY) == {"mixpanel", "bigquery", "snowflake", "redshift", "s3", "gcs", "azure"}


def test_build_sinks_keeps_configured_order(make_settings):
    settings = make_settings(
        DESTINATIONS="s3,mixpanel",
        S3_BUCKET="b",
        S3_REGION="us-east-1",
        S3_ACCESS_KEY_ID="k",
        S3_SECRET_ACCESS_KEY="s",
    )
    sinks = build_sinks(settings)
    assert [s.name for s in sinks] == ["s3", "mixpanel"]
    assert sinks[0].credentials["bucket"] == "b"
