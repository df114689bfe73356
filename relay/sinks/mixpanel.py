from __future__ import annotations

"""Pass-through to the Mixpanel ingestion API.

Receives the SDK's records untouched and forwards them to
``/<track|engage|groups>?verbose=1``.  A body carrying ``error`` (bad token,
malformed record) is a vendor rejection and becomes an error result rather
than an exception.
"""

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from relay.models import DropResult, EventKind, SinkResult, TableNames
from relay.settings import Settings
from relay.sinks.base import Sink, Sleep
from relay.utils.logger import logger
from relay.utils.retries import RETRYABLE_STATUS_CODES

__all__ = ["MixpanelSink", "base_url"]

REQUEST_TIMEOUT = 30


def base_url(region: str) -> str:
    return f"https://api{'-eu' if region.upper() == 'EU' else ''}.mixpanel.com"


class MixpanelSink(Sink):
    name = "mixpanel"
    wants_raw = True

    def __init__(
        self,
        settings: Settings,
        *,
        sleep: Sleep = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(settings, sleep=sleep)
        self.base_url = base_url(settings.mixpanel_region)
        self._transport = transport

    async def _setup(self, table_names: TableNames) -> Dict[str, bool]:
        logger.info("%s forwarding to %s", self.tag, self.base_url)
        return {"client": True}

    async def _insert(self, rows: List[Dict[str, Any]], table: str, kind: EventKind) -> SinkResult:
        path = f"/{kind.value}"
        async with httpx.AsyncClient(
            base_url=self.base_url, timeout=REQUEST_TIMEOUT, transport=self._transport
        ) as client:
            resp = await client.post(path, params={"verbose": 1}, json=rows)

        logger.info("%s got %s from %s", self.tag, resp.status_code, path)
        if resp.status_code in RETRYABLE_STATUS_CODES:
            resp.raise_for_status()

        try:
            body = resp.json()
        except ValueError:
            body = {"error": resp.text or f"HTTP {resp.status_code}"} if resp.is_error else {}

        if isinstance(body, dict) and body.get("error"):
            return SinkResult.failure(str(body["error"]), rows=len(rows))
        if resp.is_error:
            return SinkResult.failure(f"HTTP {resp.status_code}", rows=len(rows))
        return SinkResult(status="success", inserted_rows=len(rows), failed_rows=0)

    async def _drop(self, table_names: TableNames) -> DropResult:
        return DropResult(message="nothing to drop")
