"""Operational endpoints: about, info, ping."""

from __future__ import annotations

import platform
from typing import TYPE_CHECKING

from starlette.responses import JSONResponse

from gateway.responses import data_response

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from gateway.settings import GatewaySettings


async def about(request: Request) -> Response:
    """GET /about - service name and build details."""
    settings: GatewaySettings = request.app.state.settings
    return JSONResponse(
        {
            "name": settings.name,
            "appName": settings.app_name,
            "version": settings.version,
            "updated": settings.updated,
            "copyright": settings.copyright,
        },
    )


async def info(request: Request) -> Response:
    """GET /info - server architecture and the caller's address."""
    client_ip = request.headers.get("x-forwarded-for", "").split(",")[0].strip()
    if not client_ip and request.client is not None:
        client_ip = request.client.host
    return data_response({"arch": platform.machine(), "ipAddr": client_ip})


async def ping(_request: Request) -> Response:
    return JSONResponse({"message": "pong"})
