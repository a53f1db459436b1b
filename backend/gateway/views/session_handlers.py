"""Cookie-session variants of the sign-in flows, plus session refresh and sign-out.

Handlers never touch the cookie directly. They start or end the session on the
request's ``RequestAuth`` and ``SessionMiddleware`` writes the header on the way out.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict

from gateway.auth import Validator, request_auth
from gateway.responses import data_response, ok_response, read_json
from gateway.views.user_handlers import UpdateUserBody, user_record
from identity.errors import invalid_credentials, token_invalid
from identity.models import TokenKind

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from identity.models import AuthUser
    from identity.service import AuthService
    from identity.sessions import SessionStore
    from identity.tokens import TokenCodec

logger = structlog.get_logger()


class ApiKeyBody(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str = ""


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _start_session(request: Request, user: AuthUser, method: str) -> Response:
    store: SessionStore = request.app.state.session_store
    request_auth(request).start_session(store.new_session(user))
    logger.info("session started", user_uuid=user.uuid, method=method)
    return data_response(user.snapshot(), "user signed in")


async def _session_user(request: Request) -> AuthUser | None:
    """Reload the session's user. A deleted user ends the session."""
    auth = request_auth(request)
    if auth.session is None:
        auth.record(token_invalid("no valid session"))
        return None
    user = await _service(request).get_user(auth.session.auth_user.uuid)
    if user is None:
        auth.end_session()
        auth.record(token_invalid("no valid session"))
        return None
    auth.auth_user = user
    return user


async def signin(request: Request) -> Response:
    """POST /sessions/auth/signin - password sign-in that starts a cookie session."""

    async def start(validator: Validator) -> Response:
        return _start_session(request, validator.user, "password")

    return await (
        Validator(request)
        .parse_login_request_body()
        .load_auth_user_from_username()
        .check_user_has_verified_email_address()
        .check_user_can_sign_in()
        .check_password()
        .success(start)
    )


async def federated_signin(request: Request) -> Response | None:
    """POST /sessions/auth0/signin - federated sign-in that starts a cookie session."""
    auth = request_auth(request)
    if auth.federated is None:
        return None
    service = _service(request)
    user = await service.provision_federated(auth.federated)
    await service.sign_in_claim(user)
    return _start_session(request, user, "federated")


async def passwordless_validate(request: Request) -> Response:
    """POST /sessions/auth/passwordless/validate - redeem a magic link into a cookie session."""

    async def start(validator: Validator) -> Response:
        return _start_session(request, validator.user, "passwordless")

    return await (
        Validator(request)
        .load_auth_user_from_token()
        .check_user_has_verified_email_address()
        .check_user_can_sign_in()
        .success(start)
    )


async def api_key_signin(request: Request) -> Response | None:
    """POST /sessions/api/keys/signin - exchange an API key for a cookie session."""
    body = await read_json(request, ApiKeyBody)
    service = _service(request)
    user = await service.user_for_api_key(body.key)
    if user is None:
        request_auth(request).record(invalid_credentials())
        return None
    await service.sign_in_claim(user)
    return _start_session(request, user, "api_key")


async def session_info(request: Request) -> Response:
    """GET /sessions/info - whether a valid session cookie was sent, and for whom."""
    session = request_auth(request).session
    if session is None:
        return data_response({"isValid": False, "authUser": None, "createdAt": 0, "expiresAt": 0})
    store: SessionStore = request.app.state.session_store
    return data_response(
        {
            "isValid": True,
            "authUser": session.auth_user.to_json(),
            "createdAt": session.created_at,
            "expiresAt": session.created_at + store.max_age,
        },
    )


async def signout(request: Request) -> Response:
    """POST /sessions/signout - clear the session cookie."""
    auth = request_auth(request)
    if auth.session is not None:
        logger.info("session ended", user_uuid=auth.session.auth_user.uuid)
    auth.end_session()
    return ok_response("user signed out")


async def refresh(request: Request) -> Response | None:
    """POST /sessions/refresh - reload the user snapshot and restart the session clock."""
    user = await _session_user(request)
    if user is None:
        return None
    store: SessionStore = request.app.state.session_store
    request_auth(request).start_session(store.new_session(user))
    return data_response(user.snapshot(), "session refreshed")


async def new_access_token(request: Request) -> Response | None:
    """POST /sessions/tokens/access - mint an ACCESS token with the user's current roles."""
    user = await _session_user(request)
    if user is None:
        return None
    role_claim = await _service(request).sign_in_claim(user)
    codec: TokenCodec = request.app.state.token_codec
    return data_response({"accessToken": codec.mint(TokenKind.ACCESS, user.uuid, roles=role_claim)})


async def get_user(request: Request) -> Response | None:
    """GET /sessions/user - the session user's public record."""
    user = await _session_user(request)
    if user is None:
        return None
    return data_response(await user_record(_service(request), user))


async def update_user(request: Request) -> Response | None:
    """POST /sessions/user/update - change the session user's username or first name."""
    user = await _session_user(request)
    if user is None:
        return None
    body = await read_json(request, UpdateUserBody)
    service = _service(request)
    updated = await service.update_profile(user, username=body.username, first_name=body.first_name)

    auth = request_auth(request)
    if auth.session is not None:
        auth.start_session(auth.session.model_copy(update={"auth_user": updated.snapshot()}))
    return data_response(await user_record(service, updated), "user updated")
