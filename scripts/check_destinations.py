#!/usr/bin/env python3
"""Run the one-time readiness checks for every configured destination.

Usage::

    python scripts/check_destinations.py

Creates whatever is missing (datasets, tables, buckets) exactly as the relay
would on its first request, then prints each destination's readiness flags.
Exits non-zero when any destination is not ready.
"""

from __future__ import annotations

import asyncio
import pathlib
import sys

# Ensure project root is on PYTHONPATH so `import relay.*` works when the script
# is executed directly (e.g. `python scripts/check_destinations.py`).
PROJECT_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from relay.errors import RelayError  # noqa: E402
from relay.settings import get_settings  # noqa: E402
from relay.sinks import build_sinks  # noqa: E402
from relay.utils.logger import configure_logging  # noqa: E402


async def _check() -> int:
    settings = get_settings()
    failures = 0
    for sink in build_sinks(settings):
        try:
            flags = await sink.init(settings.table_names)
            print(f"{sink.name:<10} ready    {flags}")
        except RelayError as exc:
            failures += 1
            print(f"{sink.name:<10} FAILED   {exc}")
        finally:
            await sink.close()
    return 1 if failures else 0


def main() -> None:  # noqa: D401
    configure_logging()
    sys.exit(asyncio.run(_check()))


if __name__ == "__main__":
    main()
