#!/usr/bin/env python3
"""Load a JSON / NDJSON file into a warehouse table with an inferred schema.

Usage::

    # print the inferred schema, write nothing
    python scripts/load_json.py data.json --table signups --dry-run

    # load into the first configured warehouse
    python scripts/load_json.py data.ndjson --table signups

    # pick the warehouse explicitly
    python scripts/load_json.py data.json --table signups -d snowflake

Credentials come from the same environment variables the relay itself uses
(``BIGQUERY_PROJECT``, ``SNOWFLAKE_ACCOUNT`` ...).  The table name and every
column name are sanitized before anything is created.
"""

from __future__ import annotations

import argparse
import asyncio
import pathlib
import sys

# Ensure project root is on PYTHONPATH so `import relay.*` works when the script
# is executed directly (e.g. `python scripts/load_json.py`).
PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from relay.settings import get_settings  # noqa: E402
from relay.sinks import SINK_REGISTRY  # noqa: E402
from relay.utils.loader import prepare_load, read_records  # noqa: E402
from relay.utils.logger import configure_logging  # noqa: E402
from relay.utils.schema_mapper import clean_name  # noqa: E402

WAREHOUSES = ("bigquery", "snowflake", "redshift")


async def _load(path: pathlib.Path, table: str, destination: str | None, dry_run: bool) -> int:
    records = read_records(path)
    if not records:
        print(f"No records found in {path}")
        return 1

    rows, schema = prepare_load(records)
    table = clean_name(table)
    print(f"{len(rows)} rows → {table}")
    for field in schema:
        print(f"  {field.name:<40} {field.type}")
    if dry_run:
        return 0

    settings = get_settings()
    candidates = [destination] if destination else [d for d in settings.destinations if d in WAREHOUSES]
    if not candidates:
        print("No warehouse configured (set DESTINATIONS or pass --destination)", file=sys.stderr)
        return 1

    sink = SINK_REGISTRY[candidates[0]](settings)
    try:
        result = await sink.load(rows, table, schema)
    finally:
        await sink.close()
    print(result.model_dump_json(by_alias=True, exclude_none=True))
    return 0 if result.status == "success" else 2


def main() -> None:  # noqa: D401
    parser = argparse.ArgumentParser(description="Load a JSON file into a warehouse table")
    parser.add_argument("path", type=pathlib.Path, help="JSON array, object or NDJSON file")
    parser.add_argument("-t", "--table", required=True, help="Target table (sanitized before use)")
    parser.add_argument("-d", "--destination", choices=WAREHOUSES, help="Warehouse to load into")
    parser.add_argument("--dry-run", action="store_true", help="Only print the inferred schema")
    args = parser.parse_args()

    configure_logging()
    sys.exit(asyncio.run(_load(args.path, args.table, args.destination, args.dry_run)))


if __name__ == "__main__":
    main()
