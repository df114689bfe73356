"""Fixed table layouts for events, users and groups.

Columns are declared once in the canonical vocabulary (STRING, TIMESTAMP,
JSON, ...) and rendered to each warehouse dialect on demand.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from relay.errors import InvalidRecordTypeError
from relay.models import EventKind, Schema, SchemaField

__all__ = [
    "EVENTS_SCHEMA",
    "USERS_SCHEMA",
    "GROUPS_SCHEMA",
    "schema_for",
    "partition_field",
    "clustering_fields",
    "render_type",
    "render_columns",
]

EVENTS_SCHEMA: Schema = [
    SchemaField(name="event", type="STRING", mode="REQUIRED", description="The name of the event"),
    SchemaField(name="event_time", type="TIMESTAMP", description="The time the event occurred, UTC"),
    SchemaField(
        name="insert_time",
        type="TIMESTAMP",
        mode="REQUIRED",
        description="The time the event was ingested into the warehouse",
    ),
    SchemaField(name="token", type="STRING", description="The project token"),
    SchemaField(name="device_id", type="STRING", description="The device ID or anonymous ID"),
    SchemaField(name="insert_id", type="STRING", description="The insert ID or event ID"),
    SchemaField(name="user_id", type="STRING", description="The user ID or canonical ID (sparse)"),
    SchemaField(name="distinct_id", type="STRING", description="The distinct ID (legacy)"),
    SchemaField(name="properties", type="JSON", description="The event's properties"),
]

USERS_SCHEMA: Schema = [
    SchemaField(name="token", type="STRING", description="The project token"),
    SchemaField(name="distinct_id", type="STRING", mode="REQUIRED", description="The distinct ID (user ID)"),
    SchemaField(name="ip", type="STRING", description="The IP address of the user"),
    SchemaField(
        name="insert_time",
        type="TIMESTAMP",
        mode="REQUIRED",
        description="The time the profile was ingested into the warehouse",
    ),
    SchemaField(
        name="operation",
        type="STRING",
        mode="REQUIRED",
        description="The type of profile operation: set, set_once, unset, delete",
    ),
    SchemaField(name="properties", type="JSON", description="The user's profile properties"),
]

GROUPS_SCHEMA: Schema = [
    SchemaField(name="token", type="STRING", description="The project token"),
    SchemaField(name="group_key", type="STRING", mode="REQUIRED", description="The group key"),
    SchemaField(name="group_id", type="STRING", mode="REQUIRED", description="The group ID"),
    SchemaField(
        name="operation",
        type="STRING",
        mode="REQUIRED",
        description="The type of profile operation: set, set_once, unset, delete",
    ),
    SchemaField(
        name="insert_time",
        type="TIMESTAMP",
        mode="REQUIRED",
        description="The time the profile was ingested into the warehouse",
    ),
    SchemaField(name="properties", type="JSON", description="The group's properties"),
]

_SCHEMAS: Dict[EventKind, Schema] = {
    EventKind.track: EVENTS_SCHEMA,
    EventKind.engage: USERS_SCHEMA,
    EventKind.groups: GROUPS_SCHEMA,
}

_CLUSTERING: Dict[EventKind, List[str]] = {
    EventKind.track: ["event"],
    EventKind.engage: ["distinct_id"],
    EventKind.groups: ["group_id"],
}

# canonical type → dialect type; anything missing passes through unchanged
_DIALECTS: Dict[str, Dict[str, str]] = {
    "bigquery": {
        "INT": "INT64",
        "FLOAT": "FLOAT64",
        "BOOLEAN": "BOOL",
        "ARRAY": "JSON",
        "OBJECT": "JSON",
    },
    "redshift": {
        "STRING": "VARCHAR(65535)",
        "INT": "BIGINT",
        "FLOAT": "DOUBLE PRECISION",
        "JSON": "SUPER",
        "ARRAY": "SUPER",
        "OBJECT": "SUPER",
    },
    "snowflake": {
        "STRING": "VARCHAR",
        "INT": "NUMBER",
        "TIMESTAMP": "TIMESTAMP_TZ",
        "JSON": "VARIANT",
        "ARRAY": "VARIANT",
        "OBJECT": "VARIANT",
    },
}


def _kind(kind: EventKind | str) -> EventKind:
    try:
        return EventKind(kind)
    except ValueError:
        raise InvalidRecordTypeError(kind) from None


def schema_for(kind: EventKind | str) -> Schema:
    return _SCHEMAS[_kind(kind)]


def partition_field(kind: EventKind | str) -> str:
    """Day-partitioning column: event time for events, ingest time otherwise."""
    return "event_time" if _kind(kind) is EventKind.track else "insert_time"


def clustering_fields(kind: EventKind | str) -> List[str]:
    return list(_CLUSTERING[_kind(kind)])


def render_type(canonical: str, dialect: str) -> str:
    return _DIALECTS.get(dialect, {}).get(canonical.upper(), canonical.upper())


def render_columns(schema: Schema, dialect: str, *, not_null: Optional[bool] = None) -> str:
    """``name TYPE, ...`` column list for a CREATE TABLE statement."""

    parts = []
    for field in schema:
        column = f"{field.name} {render_type(field.type, dialect)}"
        required = field.mode == "REQUIRED" if not_null is None else not_null
        if required:
            column += " NOT NULL"
        parts.append(column)
    return ", ".join(parts)
