from __future__ import annotations

"""Request/response bodies for the HTTP surface."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from relay.models import DropResult, EventKind, SinkResult

__all__ = [
    "StatusResponse",
    "PingResponse",
    "SinkOutcome",
    "DropOutcome",
    "QueuedResponse",
    "dump_outcomes",
]


class StatusResponse(BaseModel):
    status: str = Field("OK", examples=["OK"])


class PingResponse(StatusResponse):
    message: str = "pong"
    version: str


class SinkOutcome(BaseModel):
    """One entry per configured destination in an ingest response."""

    name: str = Field(..., examples=["bigquery"])
    result: SinkResult
    # Only set when the sink raised instead of returning a result
    status: Optional[str] = Field(None, examples=["ERROR: Invalid Record Type"])


class DropOutcome(BaseModel):
    name: str
    result: Optional[DropResult] = None
    status: Optional[str] = None


class QueuedResponse(BaseModel):
    type: EventKind
    status: str = "queued"
    queued: Optional[int] = None


def dump_outcomes(outcomes: list[BaseModel]) -> list[Dict[str, Any]]:
    """JSON-ready list (camelCase keys, unset fields omitted)."""
    return [o.model_dump(mode="json", by_alias=True, exclude_none=True) for o in outcomes]
