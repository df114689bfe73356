from __future__ import annotations

"""OpenAPI exposure helper – serves the schema as YAML at /openapi.yaml."""

from datetime import datetime, timezone

import yaml
from fastapi import FastAPI, Request, Response

__all__ = ["install_openapi_route"]


def install_openapi_route(app: FastAPI) -> None:
    """Attach a YAML OpenAPI exporter at ``/openapi.yaml``.

    Hidden from the schema itself and cacheable for 5 minutes so SDK
    generators can fetch it repeatedly.
    """

    @app.get("/openapi.yaml", include_in_schema=False)
    async def _openapi_yaml(_: Request) -> Response:
        schema = app.openapi()
        body = f"# generated: {datetime.now(timezone.utc).date().isoformat()}\n" + yaml.safe_dump(
            schema, sort_keys=False
        )
        return Response(
            content=body,
            media_type="application/x-yaml",
            headers={"Cache-Control": "public, max-age=300"},
        )
