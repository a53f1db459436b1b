"""Upstream genomics module services.

Each module (dna, genome, gex, mutations, ...) is served by its own upstream
HTTP service. The gateway authenticates and authorizes the request, then
forwards method, query and body with an allow-list of headers.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import httpx
import structlog
import yaml

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path

logger = structlog.get_logger()

MODULES = (
    "dna",
    "genome",
    "mutations",
    "gex",
    "hubs",
    "geneconv",
    "motifs",
    "pathway",
    "seqs",
    "cytobands",
    "beds",
)

# Module paths that require ACCESS + RDF, as (route name, route path). The public
# catch-all refuses anything under their literal prefixes.
RDF_MODULE_ROUTES = (
    ("gex_exp", "/modules/gex/exp"),
    ("mutations_pileup", "/modules/mutations/pileup/{assembly}"),
    ("hubs", "/modules/hubs/{assembly}"),
    ("seqs", "/modules/seqs/{path:path}"),
    ("beds", "/modules/beds/{path:path}"),
)


def _literal_prefix(route_path: str) -> tuple[str, ...]:
    segments = route_path.removeprefix("/modules/").split("/")
    literal: list[str] = []
    for segment in segments:
        if segment.startswith("{"):
            break
        literal.append(segment)
    return tuple(literal)


_RDF_PREFIXES = frozenset(_literal_prefix(path) for _, path in RDF_MODULE_ROUTES)


def is_rdf_gated(module: str, path: str) -> bool:
    """Whether ``/modules/{module}/{path}`` falls under an RDF-gated route. Case-insensitive."""
    segments = (module.lower(), *path.lower().split("/"))
    return any(segments[: len(prefix)] == prefix for prefix in _RDF_PREFIXES)


_FORWARDED_REQUEST_HEADERS = ("accept", "content-type")
_FORWARDED_RESPONSE_HEADERS = ("content-type", "content-disposition", "cache-control")


class ModuleUnavailableError(Exception):
    """The module has no configured upstream or the upstream could not be reached."""

    def __init__(self, module: str, reason: str) -> None:
        super().__init__(f"module {module} unavailable: {reason}")
        self.module = module
        self.reason = reason


@dataclass(frozen=True)
class UpstreamResponse:
    status_code: int
    content: bytes
    headers: dict[str, str]


class ModuleBackend(Protocol):
    def upstreams(self) -> dict[str, str]: ...

    async def forward(
        self,
        module: str,
        path: str,
        *,
        method: str,
        query: str,
        body: bytes,
        headers: Mapping[str, str],
        user_id: str | None = None,
    ) -> UpstreamResponse: ...


def load_module_config(config_path: Path | None) -> dict[str, str]:
    """Read ``modules: [{name, url}, ...]`` from a YAML file. Missing file means no entries."""
    if config_path is None or not config_path.exists():
        return {}

    with config_path.open() as f:
        config = yaml.safe_load(f) or {}

    return {entry["name"]: entry["url"] for entry in config.get("modules", [])}


class HttpModuleBackend:
    def __init__(
        self,
        upstreams: Mapping[str, str] | None = None,
        *,
        config_path: Path | None = None,
        timeout: float = 5.0,
    ) -> None:
        self._upstreams = {**load_module_config(config_path), **(upstreams or {})}
        self._timeout = timeout
        unknown = sorted(set(self._upstreams) - set(MODULES))
        if unknown:
            logger.warning("upstreams configured for unknown modules", modules=unknown)

    def upstreams(self) -> dict[str, str]:
        return dict(self._upstreams)

    async def forward(
        self,
        module: str,
        path: str,
        *,
        method: str,
        query: str,
        body: bytes,
        headers: Mapping[str, str],
        user_id: str | None = None,
    ) -> UpstreamResponse:
        base_url = self._upstreams.get(module)
        if not base_url:
            raise ModuleUnavailableError(module, "no upstream configured")

        url = f"{base_url.rstrip('/')}/{path}"
        if query:
            url = f"{url}?{query}"
        out_headers = {name: headers[name] for name in _FORWARDED_REQUEST_HEADERS if name in headers}
        if user_id:
            out_headers["x-edb-user"] = user_id

        async with httpx.AsyncClient(timeout=self._timeout) as client:
            try:
                response = await client.request(method, url, content=body, headers=out_headers)
            except httpx.RequestError as exc:
                raise ModuleUnavailableError(module, type(exc).__name__) from exc

        return UpstreamResponse(
            status_code=response.status_code,
            content=response.content,
            headers={k.lower(): v for k, v in response.headers.items() if k.lower() in _FORWARDED_RESPONSE_HEADERS},
        )
