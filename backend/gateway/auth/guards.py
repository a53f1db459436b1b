"""Route guards and the fail-closed route policy.

A guard inspects the request, stores what it verified in ``RequestAuth`` and
returns True, or records an error and returns False to stop the chain. Guards
compose per route with ``guarded``::

    Route("/auth/passwords/update", guarded(jwt_user, token_kind(TokenKind.RESET_PASSWORD))(update_password))

Every Route must be wrapped by ``guarded`` or ``public_route``; startup
validation rejects unclassified routes.
"""

from __future__ import annotations

import functools
from typing import TYPE_CHECKING

import structlog
from starlette.routing import Mount, Route

from gateway.auth.context import request_auth
from gateway.responses import error_response
from identity.errors import ApiError, ErrorKind, token_invalid, wrong_token_type
from identity.roles import ADMIN, has_any_role
from identity.tokens import KeyRole, TokenError, TokenExpired

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request
    from starlette.responses import Response
    from starlette.routing import BaseRoute

    from gateway.auth.context import RequestAuth
    from identity.models import TokenKind
    from identity.tokens import TokenCodec

    type Guard = Callable[[Request, RequestAuth], Awaitable[bool]]
    type Endpoint = Callable[[Request], Awaitable[Response | None]]

logger = structlog.get_logger()

AUTH_POLICY_ATTR = "__auth_policy__"

_BEARER_PREFIX = "Bearer "


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization", "")
    if not header:
        raise token_invalid("authorization header missing")
    if not header.startswith(_BEARER_PREFIX):
        raise token_invalid("malformed authorization header")
    token = header.removeprefix(_BEARER_PREFIX).strip()
    if not token:
        raise token_invalid("malformed authorization header")
    return token


def _verify(request: Request, auth: RequestAuth, key_role: KeyRole) -> bool:
    codec: TokenCodec = request.app.state.token_codec
    try:
        token = _bearer_token(request)
        claims = codec.verify(token, key_role)
    except ApiError as exc:
        auth.record(exc)
        return False
    except TokenExpired:
        auth.record(token_invalid("token has expired"))
        return False
    except TokenError as exc:
        logger.info("token rejected", key_role=key_role, reason=type(exc).__name__)
        auth.record(token_invalid())
        return False

    auth.token = token
    if key_role is KeyRole.FEDERATED:
        auth.federated = claims
    else:
        auth.claims = claims
    return True


async def jwt_user(request: Request, auth: RequestAuth) -> bool:
    """Require a bearer token signed by a first-party key."""
    return _verify(request, auth, KeyRole.FIRST_PARTY)


async def jwt_federated(request: Request, auth: RequestAuth) -> bool:
    """Require a bearer token signed by the federated identity provider."""
    return _verify(request, auth, KeyRole.FEDERATED)


def token_kind(expected: TokenKind) -> Guard:
    async def check_kind(_request: Request, auth: RequestAuth) -> bool:
        if auth.claims is None:
            auth.record(token_invalid("no verified token"))
            return False
        if auth.claims.kind != expected:
            auth.record(wrong_token_type(auth.claims.kind, expected))
            return False
        return True

    check_kind.__name__ = f"token_kind_{expected.value.lower()}"
    return check_kind


def has_role(*roles: str) -> Guard:
    """Require one of ``roles`` in the verified role claim. ADMIN always passes."""
    required = frozenset(roles)

    async def check_roles(_request: Request, auth: RequestAuth) -> bool:
        if auth.claims is None:
            auth.record(token_invalid("no verified token"))
            return False
        if not has_any_role(auth.claims.roles, required):
            auth.record(ApiError(ErrorKind.INSUFFICIENT_ROLE, f"requires one of: {', '.join(sorted(required))}"))
            return False
        return True

    return check_roles


is_admin = has_role(ADMIN)


async def session_valid(_request: Request, auth: RequestAuth) -> bool:
    """Require a valid session cookie, already decoded by the session middleware."""
    if auth.session is None:
        auth.record(ApiError(ErrorKind.TOKEN_INVALID, "no valid session"))
        return False
    return True


def guarded(*guards: Guard) -> Callable[[Endpoint], Callable[..., Awaitable[Response]]]:
    """Run ``guards`` in order before the endpoint.

    The first failing guard stops the chain. If the chain stopped, or the
    endpoint returned no response, the last recorded error is emitted.
    """

    def decorate(endpoint: Endpoint) -> Callable[..., Awaitable[Response]]:
        @functools.wraps(endpoint)
        async def wrapper(request: Request) -> Response:
            auth = request_auth(request)
            for guard in guards:
                if not await guard(request, auth):
                    break
            else:
                response = await endpoint(request)
                if response is not None:
                    return response

            error = auth.last_error
            if error is None:
                raise RuntimeError(f"{endpoint.__name__} returned no response and recorded no error")
            return error_response(error)

        setattr(wrapper, AUTH_POLICY_ATTR, "guarded" if guards else "public")
        return wrapper

    return decorate


def public_route(endpoint: Endpoint) -> Callable[..., Awaitable[Response]]:
    """Mark an endpoint as explicitly public (no guards)."""
    return guarded()(endpoint)


def validate_route_auth_policy(routes: list[BaseRoute]) -> None:
    """Verify every Route has an auth policy marker. Mount routes are exempt.

    Raises RuntimeError listing all unclassified routes if any are found.
    """
    unclassified: list[str] = []
    for route in routes:
        if isinstance(route, Mount):
            continue
        if isinstance(route, Route) and not hasattr(route.endpoint, AUTH_POLICY_ATTR):
            name = route.name or getattr(route.endpoint, "__name__", "unknown")
            unclassified.append(f"{route.path} ({name})")

    if unclassified:
        details = ", ".join(unclassified)
        msg = f"Unclassified routes missing auth policy: {details}"
        raise RuntimeError(msg)