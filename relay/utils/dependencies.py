"""FastAPI dependency providers for the per-process relay state.

``create_app`` builds the settings, the sink instances and the batching
buffer once and parks them on ``app.state``; routes reach them through these
providers so tests can swap any of them with ``app.dependency_overrides``.
"""

from __future__ import annotations

from typing import List

from fastapi import Request

from relay.settings import Settings
from relay.sinks.base import Sink
from relay.utils.queue import BatchBuffer


def get_app_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_sinks(request: Request) -> List[Sink]:
    return request.app.state.sinks


def get_buffer(request: Request) -> BatchBuffer:
    return request.app.state.buffer


def client_ip(request: Request) -> str:
    """First ``X-Forwarded-For`` hop, else the socket peer."""
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else ""
