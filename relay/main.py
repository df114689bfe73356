"""ASGI entry-point for the event relay.

Constructs the FastAPI instance, validates configuration, builds one adapter
per configured destination, wires global middleware and exposes the ``app``
variable uvicorn imports (``uvicorn relay.main:app``).
"""

from __future__ import annotations

import os
import logging
import traceback
from contextlib import asynccontextmanager
from contextvars import ContextVar
from time import perf_counter
from typing import AsyncIterator, Awaitable, Callable, List, Mapping, Optional

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from slowapi import Limiter
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address

from relay import __version__
from relay.models import EventKind, RawRecord
from relay.settings import Settings, allowed_origins, load_settings
from relay.sinks import build_sinks
from relay.sinks.base import Sink
from relay.utils.dispatch import dispatch
from relay.utils.logger import configure_logging, logger
from relay.utils.queue import BatchBuffer
from relay.utils.utils import wait_detached


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Attach request-level context vars for structured logging."""

    _request_id_ctx: ContextVar[str] = ContextVar("request_id", default="-")

    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:  # type: ignore[override]
        start = perf_counter()
        request_id = request.headers.get("X-Request-Id", os.urandom(4).hex())
        token = self._request_id_ctx.set(request_id)
        response: Optional[Response] = None
        try:
            response = await call_next(request)
        finally:
            duration_ms = (perf_counter() - start) * 1000
            logger.info(
                "request.complete",
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code if response is not None else 500,
                    "duration_ms": round(duration_ms, 2),
                    "request_id": request_id,
                },
            )
            self._request_id_ctx.reset(token)
        return response


def _make_buffer(settings: Settings, sinks: List[Sink]) -> BatchBuffer:
    async def flush(records: List[RawRecord], kind: EventKind, headers: Mapping[str, str]):
        return await dispatch(records, kind, sinks, settings.table_names)

    return BatchBuffer(flush, max_size=settings.queue_max, interval=settings.queue_interval)


def create_app(
    settings: Optional[Settings] = None,
    sinks: Optional[List[Sink]] = None,
) -> FastAPI:
    """Build the app; raises ``ConfigurationError`` when a destination is half-configured."""

    configure_logging()
    settings = settings or load_settings()
    sinks = build_sinks(settings) if sinks is None else sinks
    buffer = _make_buffer(settings, sinks)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "relay starting",
            extra={"destinations": [s.name for s in sinks], "queue_max": settings.queue_max},
        )
        yield
        await wait_detached()
        if buffer.enabled and buffer.pending():
            await buffer.flush_all()
        for sink in sinks:
            await sink.close()

    app = FastAPI(
        title="Event Relay",
        version=__version__,
        docs_url="/docs" if not settings.is_production else None,
        redoc_url=None,
        openapi_url="/openapi.json" if not settings.is_production else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.sinks = sinks
    app.state.buffer = buffer

    # Global middleware
    app.add_middleware(RequestContextMiddleware)
    # Rate limiting middleware (SlowAPI expects limiter via app.state)
    app.state.limiter = Limiter(key_func=get_remote_address, default_limits=[settings.rate_limit])
    app.add_middleware(SlowAPIMiddleware)

    from slowapi.errors import RateLimitExceeded  # noqa: WPS433  (runtime import)
    from slowapi import _rate_limit_exceeded_handler

    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Anything uncaught: full traceback to the log, generic message to the client
    @app.exception_handler(Exception)
    async def log_unhandled_exceptions(request: Request, exc: Exception) -> JSONResponse:
        error_logger = logging.getLogger("uvicorn.error")
        error_logger.error(
            "UNHANDLED %s at %s %s\n%s",
            type(exc).__name__,
            request.method,
            request.url.path,
            "".join(traceback.format_tb(exc.__traceback__)),
        )
        return JSONResponse(
            status_code=500,
            content={"error": f"An error occurred calling {request.url.path}"},
        )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=allowed_origins(settings),
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "OPTIONS"],
        allow_headers=["*"],
        max_age=600,
    )

    from relay.routers import admin_routes, ingest_routes  # noqa: WPS433 (runtime import)

    app.include_router(ingest_routes.router)
    app.include_router(admin_routes.router)

    if not settings.is_production:
        from relay.openapi import install_openapi_route  # noqa: WPS433 (runtime import)

        install_openapi_route(app)

    return app


# The object uvicorn imports
app = create_app()
