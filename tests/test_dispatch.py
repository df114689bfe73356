import asyncio
import logging

import pytest

from relay.errors import InvalidRecordTypeError
from relay.models import EventKind, TableNames
from relay.utils.dispatch import dispatch, drop_all
from relay.utils.utils import wait_detached
from tests.sink_stubs import StubSink

TABLES = TableNames(event_table="ev", user_table="us", group_table="gr")
RECORDS = [{"event": "signup", "properties": {"$os": "mac", "distinct_id": "u1", "time": 1700000000}}]


@pytest.mark.asyncio
async def test_every_sink_receives_the_batch():
    a, b = StubSink("a"), StubSink("b")
    outcomes = await dispatch(RECORDS, "track", [a, b], TABLES)
    assert [o.name for o in outcomes] == ["a", "b"]
    assert all(o.result.status == "success" and o.result.inserted_rows == 1 for o in outcomes)
    assert a.calls[0][0] == b.calls[0][0]
    assert a.calls[0][1] is EventKind.track
    assert a.calls[0][2] == TABLES


@pytest.mark.asyncio
async def test_vendor_sink_gets_raw_records_others_get_flat_rows():
    vendor, warehouse = StubSink("mixpanel", wants_raw=True), StubSink("bigquery")
    await dispatch(RECORDS, EventKind.track, [vendor, warehouse], TABLES)
    assert vendor.calls[0][0] == RECORDS
    flat = warehouse.calls[0][0][0]
    assert flat["os"] == "mac"
    assert flat["event_time"] == "2023-11-14T22:13:20.000Z"
    assert "properties" not in flat


@pytest.mark.asyncio
async def test_failing_sink_is_isolated():
    good = StubSink("good")
    bad = StubSink("bad", fail=RuntimeError("credentials rejected"))
    outcomes = await dispatch(RECORDS, "engage", [bad, good], TABLES)
    by_name = {o.name: o for o in outcomes}
    assert by_name["good"].result.status == "success"
    assert by_name["bad"].status == "ERROR: credentials rejected"
    assert by_name["bad"].result.status == "error"
    assert by_name["bad"].result.error_message == "credentials rejected"
    assert by_name["bad"].result.failed_rows == 1


@pytest.mark.asyncio
async def test_order_follows_configuration_not_completion():
    class Slow(StubSink):
        async def write(self, batch, kind, table_names):
            await asyncio.sleep(0.05)
            return await super().write(batch, kind, table_names)

    outcomes = await dispatch(RECORDS, "groups", [Slow("slow"), StubSink("fast")], TABLES)
    assert [o.name for o in outcomes] == ["slow", "fast"]


@pytest.mark.asyncio
async def test_sinks_run_concurrently():
    started = []
    release = asyncio.Event()

    class Gate(StubSink):
        async def write(self, batch, kind, table_names):
            started.append(self.name)
            if len(started) == 2:
                release.set()
            await asyncio.wait_for(release.wait(), timeout=1)
            return await super().write(batch, kind, table_names)

    outcomes = await dispatch(RECORDS, "track", [Gate("a"), Gate("b")], TABLES)
    assert all(o.result.status == "success" for o in outcomes)


@pytest.mark.asyncio
async def test_unknown_type_is_rejected_before_any_sink_runs():
    sink = StubSink("a")
    with pytest.raises(InvalidRecordTypeError):
        await dispatch(RECORDS, "alias", [sink], TABLES)
    assert sink.calls == []


@pytest.mark.asyncio
async def test_drop_all_collects_errors():
    outcomes = await drop_all([StubSink("a"), StubSink("b", fail=RuntimeError("nope"))], TABLES)
    assert outcomes[0].result.dropped == ["ev", "us", "gr"]
    assert outcomes[1].status == "ERROR: nope"


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_sink_writes():
    class SlowSink(StubSink):
        completed = False

        async def write(self, batch, kind, table_names):
            await asyncio.sleep(0.2)
            self.completed = True
            return await super().write(batch, kind, table_names)

    sink = SlowSink("slow")
    task = asyncio.create_task(dispatch(RECORDS, "track", [sink], TABLES))
    await asyncio.sleep(0.05)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    await wait_detached()
    assert sink.completed
    assert len(sink.calls) == 1


@pytest.mark.asyncio
async def test_dispatch_logs_record_shapes(caplog):
    caplog.set_level(logging.INFO, logger="relay")
    profile = {"$distinct_id": "u1", "$set": {"plan": "pro"}}
    await dispatch(RECORDS + [profile], "engage", [StubSink("a")], TABLES)
    entry = next(r for r in caplog.records if r.getMessage().startswith("dispatched"))
    assert entry.shapes == {"event": 1, "profile_update": 1}
