from __future__ import annotations

"""Core domain models shared by the pipeline, the dispatch engine and sinks."""

from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

__all__ = [
    "EventKind",
    "RecordKind",
    "PROFILE_OPERATIONS",
    "RawRecord",
    "FlatRow",
    "TableNames",
    "SchemaField",
    "Schema",
    "SinkResult",
    "DropResult",
    "NormalizedRecord",
]

RawRecord = Dict[str, Any]
FlatRow = Dict[str, Any]

# Keys whose value is a mapping of property → value applied to a profile
PROFILE_OPERATIONS = (
    "$set",
    "$set_once",
    "$unset",
    "$delete",
    "$append",
    "$add",
    "$union",
    "$increment",
)


class EventKind(str, Enum):
    """Endpoint a batch arrived on; decides the target table."""

    track = "track"
    engage = "engage"
    groups = "groups"


class RecordKind(str, Enum):
    event = "event"
    profile_update = "profile_update"


class TableNames(BaseModel):
    """Destination table (or lake prefix / topic) per record type."""

    model_config = ConfigDict(frozen=True)

    event_table: str = "events"
    user_table: str = "users"
    group_table: str = "groups"

    def for_kind(self, kind: EventKind | str) -> str:
        """Resolve ``track``/``engage``/``groups`` to a table name."""
        from relay.errors import InvalidRecordTypeError  # local import avoids a cycle

        try:
            kind = EventKind(kind)
        except ValueError:
            raise InvalidRecordTypeError(kind) from None
        return {
            EventKind.track: self.event_table,
            EventKind.engage: self.user_table,
            EventKind.groups: self.group_table,
        }[kind]

    def all(self) -> List[str]:
        return [self.event_table, self.user_table, self.group_table]


class SchemaField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    type: str
    mode: str = "NULLABLE"
    description: str = ""


Schema = List[SchemaField]


class SinkResult(BaseModel):
    """Outcome of writing one batch to one destination."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status: Literal["success", "error", "partial failure"] = "success"
    inserted_rows: Optional[int] = None
    failed_rows: Optional[int] = None
    duration: int = 0
    error_message: Optional[str] = None
    errors: Optional[List[str]] = None

    @classmethod
    def failure(cls, message: str, *, rows: int | None = None, duration: int = 0) -> "SinkResult":
        return cls(
            status="error",
            inserted_rows=0 if rows is not None else None,
            failed_rows=rows,
            duration=duration,
            error_message=message,
        )


class DropResult(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    dropped: List[str] = Field(default_factory=list)
    message: Optional[str] = None


class NormalizedRecord(BaseModel):
    """A flat row tagged with the shape it was detected as."""

    kind: RecordKind
    operation: Optional[str] = None
    row: FlatRow
