"""Map flat rows onto table schemas.

``partition`` splits a row into known columns plus a catch-all
``properties`` blob.  The remaining helpers infer a schema from sample rows
and turn arbitrary keys into identifiers every warehouse accepts; they are
used only when loading into a table without a predefined schema.
"""

from __future__ import annotations

import json
import re
from datetime import datetime
from typing import Any, Dict, Iterable, List, Sequence

from relay.models import FlatRow, Schema, SchemaField
from relay.utils.utils import utc_now_iso

__all__ = [
    "partition",
    "partition_rows",
    "infer_type",
    "generate_schema",
    "sanitize_identifier",
    "prep_headers",
    "clean_name",
    "MAX_IDENTIFIER_LENGTH",
]

MAX_IDENTIFIER_LENGTH = 300
NAMESPACE_PREFIX = "db_"
RESERVED_WORDS = frozenset(
    {"select", "table", "delete", "insert", "update", "from", "where", "group", "order", "user"}
)

_INVALID_CHARS = re.compile(r"[^a-zA-Z0-9_]+")
_UNDERSCORES = re.compile(r"_{2,}")


# ---------------------------------------------------------------------------
# Partitioning
# ---------------------------------------------------------------------------


def partition(row: FlatRow, schema: Schema, insert_time: str | None = None) -> Dict[str, Any]:
    """Keep schema columns at the top level; nest everything else under ``properties``."""

    columns = {field.name for field in schema}
    out: Dict[str, Any] = {}
    extra: Dict[str, Any] = {}

    for key, value in row.items():
        if key == "properties" and isinstance(value, dict):
            extra.update(value)
        elif key in columns:
            out[key] = value
        else:
            extra[key] = value

    if extra:
        # a non-mapping "properties" column value rides along inside the blob
        if "properties" in out:
            extra["properties"] = out["properties"]
        out["properties"] = extra
    out["insert_time"] = insert_time or utc_now_iso()
    return out


def partition_rows(rows: Iterable[FlatRow], schema: Schema) -> List[Dict[str, Any]]:
    now = utc_now_iso()
    return [partition(row, schema, insert_time=now) for row in rows]


# ---------------------------------------------------------------------------
# Type inference
# ---------------------------------------------------------------------------


def _is_boolean(value: Any) -> bool:
    if isinstance(value, bool):
        return True
    return isinstance(value, str) and value.lower() in {"true", "false"}


def _json_kind(value: Any) -> str | None:
    if not isinstance(value, str):
        return None
    text = value.strip()
    if not (
        (text.startswith("[") and text.endswith("]"))
        or (text.startswith("{") and text.endswith("}"))
    ):
        return None
    try:
        json.loads(text)
    except ValueError:
        return None
    return "ARRAY" if text.startswith("[") else "OBJECT"


def _is_number(value: Any) -> bool:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return True
    if isinstance(value, str):
        try:
            parsed = float(value)
        except ValueError:
            return False
        return parsed == parsed and parsed not in (float("inf"), float("-inf"))
    return False


def _is_iso_date(value: Any) -> bool:
    if not isinstance(value, str) or not value[:4].isdigit():
        return False
    try:
        datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return False
    return True


def infer_type(value: Any) -> str:
    """Classify a sample value into the canonical column vocabulary."""

    if isinstance(value, list):
        return "ARRAY"
    if isinstance(value, dict):
        return "OBJECT"
    if _is_boolean(value):
        return "BOOLEAN"
    json_kind = _json_kind(value)
    if json_kind:
        return json_kind
    if _is_number(value):
        return "FLOAT" if "." in str(value) else "INT"
    if _is_iso_date(value):
        return "TIMESTAMP" if ("T" in value or "Z" in value) else "DATE"
    return "STRING"


def generate_schema(rows: Sequence[FlatRow]) -> Schema:
    """Infer one column per distinct key from the first non-empty sample."""

    keys: List[str] = []
    for row in rows:
        for key in row:
            if key not in keys:
                keys.append(key)

    schema: Schema = []
    for key in keys:
        sample = next((row[key] for row in rows if row.get(key)), None)
        schema.append(SchemaField(name=key, type=infer_type(sample) if sample is not None else "STRING"))
    return schema


# ---------------------------------------------------------------------------
# Identifier sanitization
# ---------------------------------------------------------------------------


def sanitize_identifier(name: Any) -> str:
    """Column-safe identifier; running it on its own output changes nothing."""

    text = "null" if name is None else str(name).strip()
    text = _INVALID_CHARS.sub("_", text)
    text = _UNDERSCORES.sub("_", text)
    if not text or not (text[0].isalpha() or text[0] == "_"):
        text = "_" + text
    return text[:MAX_IDENTIFIER_LENGTH].lower()


def prep_headers(headers: Sequence[Any]) -> Dict[str, str]:
    """Map original column names to unique sanitized ones (``_1``, ``_2`` on collision)."""

    mapping: Dict[str, str] = {}
    used: set[str] = set()
    for index, original in enumerate(headers):
        source = "" if original is None else str(original)
        clean = sanitize_identifier(source or f"empty_index_{index}")
        unique, suffix = clean, 1
        while unique in used:
            unique = f"{clean}_{suffix}"
            suffix += 1
        used.add(unique)
        mapping[source] = unique
    return mapping


def clean_name(name: Any) -> str:
    """Table-safe identifier: sanitized, namespaced when reserved or too short."""

    clean = sanitize_identifier(name)
    if clean in RESERVED_WORDS or len(clean) < 3:
        clean = sanitize_identifier(f"{NAMESPACE_PREFIX}{clean}")
    return clean
