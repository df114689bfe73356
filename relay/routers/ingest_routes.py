from __future__ import annotations

"""SDK ingestion endpoints: ``/track``, ``/engage`` and ``/groups``.

Every request body is decoded, optionally enriched, then either buffered
(``QUEUE_MAX`` > 0) or dispatched to all destinations right away.  The
response is the per-destination outcome list; a failing destination never
changes the status code.
"""

from typing import Any, Dict, List, Union

from fastapi import APIRouter, Depends, HTTPException, Request, status

from relay.models import EventKind
from relay.schemas import QueuedResponse, SinkOutcome, dump_outcomes
from relay.settings import Settings
from relay.sinks.base import Sink
from relay.utils.decoder import decode, extract_payload
from relay.utils.dependencies import client_ip, get_app_settings, get_buffer, get_sinks
from relay.utils.dispatch import dispatch
from relay.utils.enrich import add_ip, add_token
from relay.utils.logger import logger
from relay.utils.queue import BatchBuffer

router = APIRouter(tags=["ingest"])

IngestResponse = Union[List[Dict[str, Any]], Dict[str, Any]]


async def _ingest(
    kind: EventKind,
    request: Request,
    settings: Settings,
    sinks: List[Sink],
    buffer: BatchBuffer,
) -> IngestResponse:
    body = await request.body()
    payload = extract_payload(body, request.headers.get("content-type", ""))
    if payload is None or payload == "":
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No data provided")

    records = decode(payload)
    if request.query_params.get("ip") == "1":
        add_ip(records, kind, client_ip(request))
    add_token(records, kind, settings.mixpanel_token)
    logger.debug("decoded %d %s records", len(records), kind.value)

    if settings.queue_enabled:
        flushed = await buffer.add(kind, records, dict(request.headers))
        await buffer.check_interval()
        if flushed is not None:
            return dump_outcomes(flushed)
        return QueuedResponse(type=kind, queued=buffer.pending(kind)).model_dump(mode="json", exclude_none=True)

    outcomes = await dispatch(records, kind, sinks, settings.table_names)
    return dump_outcomes(outcomes)


_RESPONSES: Dict[Union[int, str], Dict[str, Any]] = {
    200: {"model": List[SinkOutcome], "description": "One outcome per destination (or a queued ack)"},
    400: {"description": "Empty body"},
}


@router.post("/track", responses=_RESPONSES)
async def track(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sinks: List[Sink] = Depends(get_sinks),
    buffer: BatchBuffer = Depends(get_buffer),
) -> IngestResponse:
    return await _ingest(EventKind.track, request, settings, sinks, buffer)


@router.post("/engage", responses=_RESPONSES)
async def engage(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sinks: List[Sink] = Depends(get_sinks),
    buffer: BatchBuffer = Depends(get_buffer),
) -> IngestResponse:
    return await _ingest(EventKind.engage, request, settings, sinks, buffer)


@router.post("/groups", responses=_RESPONSES)
async def groups(
    request: Request,
    settings: Settings = Depends(get_app_settings),
    sinks: List[Sink] = Depends(get_sinks),
    buffer: BatchBuffer = Depends(get_buffer),
) -> IngestResponse:
    return await _ingest(EventKind.groups, request, settings, sinks, buffer)
