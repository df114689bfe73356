from __future__ import annotations

"""Health, housekeeping and legacy endpoints."""

from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse

from relay import __version__
from relay.schemas import DropOutcome, PingResponse, StatusResponse, dump_outcomes
from relay.settings import Settings
from relay.sinks.base import Sink
from relay.utils.dependencies import get_app_settings, get_sinks
from relay.utils.dispatch import drop_all
from relay.utils.logger import logger

router = APIRouter(tags=["admin"])

# Non-standard status the SDK treats as "ignore"
DEPRECATED_STATUS = 299


@router.api_route("/", methods=["GET", "POST"], response_model=StatusResponse)
async def root() -> StatusResponse:
    return StatusResponse()


@router.api_route("/ping", methods=["GET", "POST", "PUT"], response_model=PingResponse)
async def ping() -> PingResponse:
    return PingResponse(version=__version__)


@router.post("/drop", responses={200: {"model": List[DropOutcome]}, 403: {"description": "Production"}})
async def drop(
    settings: Settings = Depends(get_app_settings),
    sinks: List[Sink] = Depends(get_sinks),
) -> List[Dict[str, Any]]:
    """Delete every table/prefix on every destination (non-production only)."""

    if settings.is_production:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="drop is disabled in production")
    logger.warning("dropping all destination tables", extra={"sinks": [s.name for s in sinks]})
    return dump_outcomes(await drop_all(sinks, settings.table_names))


@router.api_route("/decide", methods=["GET", "POST"], include_in_schema=False)
async def decide() -> JSONResponse:
    return JSONResponse(
        status_code=DEPRECATED_STATUS,
        content={"error": "the /decide endpoint is deprecated"},
    )
