"""Proxy endpoints for the genomics module services."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from starlette.responses import Response

from gateway.auth import request_auth
from gateway.modules import MODULES, ModuleUnavailableError, is_rdf_gated
from gateway.responses import data_response
from identity.errors import ApiError, ErrorKind

if TYPE_CHECKING:
    from starlette.requests import Request

    from gateway.modules import ModuleBackend

logger = structlog.get_logger()

_PREFIX = "/modules/"
_BAD_SEGMENTS = frozenset({"", ".", ".."})


def _module_path(request: Request) -> tuple[str, str]:
    """``/modules/gex/exp`` -> ``("gex", "exp")``.

    Empty and dot segments are refused so the forwarded path is exactly the
    path the router matched.
    """
    module, _, rest = request.url.path.removeprefix(_PREFIX).partition("/")
    if module not in MODULES:
        raise ApiError(ErrorKind.NOT_FOUND, f"unknown module: {module}")
    if any(segment in _BAD_SEGMENTS for segment in rest.split("/")):
        raise ApiError(ErrorKind.NOT_FOUND, "unknown module path")
    return module, rest


async def list_modules(request: Request) -> Response:
    """GET /modules - known modules and whether each has an upstream."""
    backend: ModuleBackend = request.app.state.module_backend
    upstreams = backend.upstreams()
    return data_response([{"name": name, "available": name in upstreams} for name in MODULES])


async def proxy(request: Request) -> Response:
    """Forward a request that already passed its route's guards."""
    module, path = _module_path(request)
    return await _forward(request, module, path)


async def public_proxy(request: Request) -> Response:
    """Forward an unguarded request. Paths under an RDF-gated route are refused."""
    module, path = _module_path(request)
    if is_rdf_gated(module, path):
        logger.info("gated module path on public route", module=module)
        raise ApiError(ErrorKind.NOT_FOUND, "unknown module path")
    return await _forward(request, module, path)


async def _forward(request: Request, module: str, path: str) -> Response:
    claims = request_auth(request).claims
    backend: ModuleBackend = request.app.state.module_backend
    try:
        upstream = await backend.forward(
            module,
            path,
            method=request.method,
            query=request.url.query,
            body=await request.body(),
            headers=request.headers,
            user_id=claims.user_id if claims is not None else None,
        )
    except ModuleUnavailableError as exc:
        logger.warning("module unavailable", module=exc.module, reason=exc.reason)
        raise ApiError(ErrorKind.UNAVAILABLE, f"module {module} is unavailable") from exc

    return Response(upstream.content, status_code=upstream.status_code, headers=upstream.headers)
