"""ASGI middleware for the gateway, listed outermost first as installed by create_app.

- RecoveryMiddleware: unhandled exception -> 500 INTERNAL
- RequestLogMiddleware: one "http request" log line per request
- (Starlette CORSMiddleware)
- ErrorCollectionMiddleware: installs RequestAuth, renders a raised ApiError
- SessionMiddleware: decodes the session cookie in, writes pending changes out
"""

from __future__ import annotations

import time
from http import HTTPStatus
from http.cookies import CookieError, SimpleCookie
from typing import TYPE_CHECKING

import structlog
from starlette.responses import Response

from gateway.auth.context import STATE_KEY, SessionChange, install_request_auth
from gateway.responses import error_response
from identity.errors import ApiError, ErrorKind

if TYPE_CHECKING:
    from starlette.types import ASGIApp, Message, Receive, Scope, Send

    from gateway.auth.context import RequestAuth
    from identity.sessions import SessionStore

logger = structlog.get_logger()


class RecoveryMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_tracking(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_tracking)
        except Exception:
            logger.exception("unhandled error", method=scope["method"], path=scope["path"])
            if response_started:
                raise
            response = error_response(ApiError(ErrorKind.INTERNAL))
            await response(scope, receive, send)


class RequestLogMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        status = HTTPStatus.INTERNAL_SERVER_ERROR

        async def send_capturing(message: Message) -> None:
            nonlocal status
            if message["type"] == "http.response.start":
                status = message["status"]
            await send(message)

        try:
            await self.app(scope, receive, send_capturing)
        finally:
            logger.info(
                "http request",
                method=scope["method"],
                path=scope["path"],
                status=int(status),
                duration_ms=round((time.perf_counter() - start) * 1000, 2),
            )


class ErrorCollectionMiddleware:
    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        install_request_auth(scope)
        try:
            await self.app(scope, receive, send)
        except ApiError as exc:
            response = error_response(exc)
            await response(scope, receive, send)


class SessionMiddleware:
    """Load the session cookie into RequestAuth and apply session changes to the response."""

    def __init__(self, app: ASGIApp, session_store: SessionStore) -> None:
        self.app = app
        self._store = session_store

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        auth: RequestAuth = scope.get("state", {}).get(STATE_KEY) or install_request_auth(scope)
        auth.session = self._store.decode(_get_cookie_from_scope(scope, self._store.cookie_name))

        async def send_with_cookie(message: Message) -> None:
            if message["type"] == "http.response.start" and auth.session_change is not SessionChange.NONE:
                message["headers"] = [*message.get("headers", []), *self._cookie_headers(auth)]
            await send(message)

        await self.app(scope, receive, send_with_cookie)

    def _cookie_headers(self, auth: RequestAuth) -> list[tuple[bytes, bytes]]:
        carrier = Response()
        if auth.session_change is SessionChange.WRITE and auth.session is not None:
            self._store.write(carrier, auth.session)
        else:
            self._store.clear(carrier)
        return [(name, value) for name, value in carrier.raw_headers if name == b"set-cookie"]


def _get_cookie_from_scope(scope: Scope, name: str) -> str | None:
    """Extract a cookie value from the ASGI scope headers."""
    for header_name, header_value in scope.get("headers", []):
        if header_name == b"cookie":
            try:
                cookie = SimpleCookie(header_value.decode("latin-1"))
            except CookieError:
                continue
            morsel = cookie.get(name)
            if morsel is not None:
                return morsel.value
    return None
