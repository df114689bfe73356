"""Helpers for loading arbitrary JSON files into a warehouse table.

Unlike the SDK endpoints these rows have no predefined layout, so column
names are sanitized and the schema is inferred from the data itself.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Tuple

from relay.models import FlatRow, Schema
from relay.utils.schema_mapper import generate_schema, prep_headers

__all__ = ["read_records", "prepare_load"]


def read_records(path: Path) -> List[Dict[str, Any]]:
    """Read a JSON array, a single JSON object or newline-delimited JSON."""

    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    try:
        data = json.loads(text)
    except ValueError:
        data = [json.loads(line) for line in text.splitlines() if line.strip()]
    if isinstance(data, dict):
        data = [data]
    return [row for row in data if isinstance(row, dict)]


def prepare_load(records: List[Dict[str, Any]]) -> Tuple[List[FlatRow], Schema]:
    """Rename every key to a safe identifier and infer the table schema."""

    headers: List[str] = []
    for record in records:
        for key in record:
            if key not in headers:
                headers.append(key)
    mapping = prep_headers(headers)
    rows = [{mapping[str(k)]: v for k, v in record.items()} for record in records]
    return rows, generate_schema(rows)
