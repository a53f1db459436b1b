"""Token introspection, refresh-to-access exchange and federated sign-in."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from gateway.auth import Validator, request_auth
from gateway.responses import data_response
from gateway.views.auth_handlers import issue_tokens
from identity.models import TokenKind

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from identity.service import AuthService
    from identity.tokens import TokenCodec

logger = structlog.get_logger()


async def token_info(request: Request) -> Response:
    """POST /auth/tokens/info - subject, kind and expiry of the bearer token. Roles are not disclosed."""
    claims = Validator(request).claims
    return data_response(
        {
            "uuid": claims.user_id,
            "kind": claims.kind.value,
            "expires": claims.expires_at.isoformat(),
        },
    )


async def new_access_token(request: Request) -> Response:
    """POST /auth/tokens/access - mint an ACCESS token carrying the refresh token's roles.

    Roles are not re-read from the directory; a user whose roles changed must sign in again.
    """

    async def mint(validator: Validator) -> Response:
        codec: TokenCodec = request.app.state.token_codec
        claims = validator.claims
        return data_response({"accessToken": codec.mint(TokenKind.ACCESS, claims.user_id, roles=claims.roles)})

    return await Validator(request).check_is_valid_refresh_token().success(mint)


async def federated_validate(request: Request) -> Response | None:
    """POST /auth/auth0/validate - swap a federated token for local refresh and access tokens."""
    auth = request_auth(request)
    if auth.federated is None:
        return None
    service: AuthService = request.app.state.auth_service
    user = await service.provision_federated(auth.federated)
    role_claim = await service.sign_in_claim(user)
    logger.info("user signed in", user_uuid=user.uuid, method="federated")
    return issue_tokens(request, user, role_claim)
