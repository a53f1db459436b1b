"""Operator utilities."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING

from gateway.responses import data_response
from identity.errors import bad_request
from identity.password import PASSWORD_MAX_BYTES

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.responses import Response

    from identity.password import PasswordHasher

DEFAULT_KEY_LENGTH = 32
MAX_KEY_LENGTH = 1024


async def hash_password(request: Request) -> Response:
    """GET /utils/passwords/hash?password= - hash a password with the configured hasher."""
    password = request.query_params.get("password", "")
    if not password:
        raise bad_request("password is required")
    if len(password.encode("utf-8")) > PASSWORD_MAX_BYTES:
        raise bad_request(f"password must not exceed {PASSWORD_MAX_BYTES} bytes")
    hasher: PasswordHasher = request.app.state.password_hasher
    return data_response({"hash": await hasher.hash(password)})


async def random_key(request: Request) -> Response:
    """GET /utils/randkey?l= - a random URL-safe key of ``l`` characters."""
    raw = request.query_params.get("l", "")
    try:
        length = int(raw) if raw else DEFAULT_KEY_LENGTH
    except ValueError as exc:
        raise bad_request("l must be an integer") from exc
    if not 1 <= length <= MAX_KEY_LENGTH:
        raise bad_request(f"l must be between 1 and {MAX_KEY_LENGTH}")
    return data_response({"key": secrets.token_urlsafe(length)[:length]})
