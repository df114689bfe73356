import copy
from datetime import datetime, timezone

from relay.models import RecordKind
from relay.utils.transforms import detect_kind, epoch_to_iso, flatten_record, normalize, tag_rows


def _no_sigils(row: dict) -> bool:
    return not any(key.startswith("$") for key in row)


def test_event_is_flattened():
    record = {
        "event": "checkout",
        "properties": {
            "$device_id": "dev-1",
            "$insert_id": "ins-1",
            "distinct_id": "u1",
            "token": "abc",
            "cart_size": 3,
        },
    }
    row = flatten_record(record)
    assert row == {
        "event": "checkout",
        "device_id": "dev-1",
        "insert_id": "ins-1",
        "distinct_id": "u1",
        "token": "abc",
        "cart_size": 3,
    }


def test_input_is_not_mutated():
    record = {"event": "x", "properties": {"$os": "mac", "time": 1700000000}}
    before = copy.deepcopy(record)
    flatten_record(record)
    assert record == before


def test_millisecond_time():
    ms = 1700000000123
    row = flatten_record({"event": "x", "properties": {"time": ms}})
    expected = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    assert row["event_time"] == expected.isoformat(timespec="milliseconds").replace("+00:00", "Z")
    assert "time" not in row


def test_second_time():
    row = flatten_record({"event": "x", "properties": {"time": 1700000000}})
    assert row["event_time"] == "2023-11-14T22:13:20.000Z"


def test_integral_float_millisecond_time():
    assert epoch_to_iso(1700000000000.0) == "2023-11-14T22:13:20.000Z"
    assert epoch_to_iso(1700000000.0) == "2023-11-14T22:13:20.000Z"


def test_fractional_13_char_time_is_seconds():
    # "1700000000.12" has 13 characters but a fractional part
    assert epoch_to_iso(1700000000.12).startswith("2023-11-14T22:13:20")


def test_unparseable_time_is_kept():
    row = flatten_record({"event": "x", "properties": {"time": "yesterday"}})
    assert row["event_time"] == "yesterday"


def test_profile_set_is_flattened():
    record = {
        "$token": "abc",
        "$distinct_id": "u1",
        "$ip": "1.2.3.4",
        "$set": {"$name": "Ada", "plan": "pro"},
    }
    row = flatten_record(record)
    assert row == {
        "token": "abc",
        "distinct_id": "u1",
        "ip": "1.2.3.4",
        "operation": "$set",
        "name": "Ada",
        "plan": "pro",
    }
    assert _no_sigils(row)


def test_profile_unset_keeps_list():
    row = flatten_record({"$token": "t", "$distinct_id": "u1", "$unset": ["plan", "trial"]})
    assert row["operation"] == "$unset"
    assert row["unset"] == ["plan", "trial"]


def test_group_update():
    record = {
        "$token": "t",
        "$group_key": "company",
        "$group_id": "acme",
        "$set_once": {"founded": 1999},
    }
    row = flatten_record(record)
    assert row["group_key"] == "company"
    assert row["group_id"] == "acme"
    assert row["operation"] == "$set_once"
    assert row["founded"] == 1999


def test_no_output_key_has_a_sigil():
    records = [
        {"event": "a", "properties": {"$$weird": 1, "$os": "x"}},
        {"$token": "t", "$distinct_id": "d", "$set": {"$$nested": True}},
    ]
    for row in normalize(records):
        assert _no_sigils(row)


def test_detect_kind():
    assert detect_kind({"event": "x", "properties": {}}) is RecordKind.event
    assert detect_kind({"$distinct_id": "u", "$append": {"list": 1}}) is RecordKind.profile_update


def test_tag_rows():
    tagged = tag_rows(
        [
            {"event": "x", "properties": {"distinct_id": "u"}},
            {"$distinct_id": "u", "$increment": {"logins": 1}},
        ]
    )
    assert [t.kind for t in tagged] == [RecordKind.event, RecordKind.profile_update]
    assert tagged[0].operation is None
    assert tagged[1].operation == "$increment"
    assert tagged[1].row["logins"] == 1
