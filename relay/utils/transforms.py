"""Flatten SDK records into warehouse rows.

Events arrive as ``{"event": ..., "properties": {...}}`` and profile updates as
``{"$token": ..., "$distinct_id": ..., "$set": {...}}``.  Both become a single
level mapping with every ``$`` sigil stripped; profile updates keep which
operation they were under ``operation``.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from typing import Any, Iterable, List, Optional

from relay.models import PROFILE_OPERATIONS, FlatRow, NormalizedRecord, RawRecord, RecordKind
from relay.utils.utils import to_iso

__all__ = [
    "detect_kind",
    "epoch_to_iso",
    "flatten_record",
    "normalize",
    "tag_rows",
]

# Epoch values rendered with exactly this many digits are milliseconds.
# Second-precision values reach 13 digits only after the year 2286.
_MILLIS_DIGITS = 13


def detect_kind(record: RawRecord) -> RecordKind:
    """Event vs. profile update, decided by which keys are present."""
    if any(op in record for op in PROFILE_OPERATIONS):
        return RecordKind.profile_update
    return RecordKind.event


def epoch_to_iso(value: Any) -> str:
    """Render an epoch (seconds or milliseconds) as ISO-8601 UTC."""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    text = str(value)
    seconds = float(value)
    if len(text) == _MILLIS_DIGITS and "." not in text:
        seconds = seconds / 1000
    return to_iso(datetime.fromtimestamp(seconds, tz=timezone.utc))


def _hoist_properties(row: FlatRow, properties: dict) -> None:
    for key, value in properties.items():
        if key.startswith("$"):
            row[key[1:]] = value
        elif key == "time":
            try:
                row["event_time"] = epoch_to_iso(value)
            except (TypeError, ValueError, OverflowError, OSError):
                row["event_time"] = value
        else:
            row[key] = value


def flatten_record(record: RawRecord) -> FlatRow:
    """Flatten one record; the input is left untouched."""

    record = copy.deepcopy(record)
    row: FlatRow = {}
    properties: Optional[dict] = None

    for key, value in record.items():
        if key in PROFILE_OPERATIONS:
            row["operation"] = key
            if isinstance(value, dict):
                row.update(value)
            else:
                # $unset carries a list of property names, $delete an empty string
                row[key[1:]] = value
        elif key.startswith("$"):
            row[key[1:]] = value
        elif key == "properties" and isinstance(value, dict):
            properties = value
        else:
            row[key] = value

    if properties is not None:
        _hoist_properties(row, properties)

    # nested keys hoisted up can themselves carry sigils ("$name" inside $set)
    for key in [k for k in row if k.startswith("$")]:
        row[key.lstrip("$")] = row.pop(key)

    return row


def normalize(records: Iterable[RawRecord]) -> List[FlatRow]:
    return [flatten_record(record) for record in records]


def tag_rows(records: Iterable[RawRecord]) -> List[NormalizedRecord]:
    """Normalize and tag each row with the shape it was detected as."""
    tagged: List[NormalizedRecord] = []
    for record in records:
        row = flatten_record(record)
        kind = detect_kind(record)
        tagged.append(
            NormalizedRecord(
                kind=kind,
                operation=row.get("operation") if kind is RecordKind.profile_update else None,
                row=row,
            )
        )
    return tagged
