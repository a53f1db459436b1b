"""Gateway auth: request context, route guards, and the validation pipeline."""

from gateway.auth.context import RequestAuth, request_auth
from gateway.auth.guards import (
    guarded,
    has_role,
    is_admin,
    jwt_federated,
    jwt_user,
    public_route,
    session_valid,
    token_kind,
    validate_route_auth_policy,
)
from gateway.auth.validator import LoginBody, Validator

__all__ = [
    "LoginBody",
    "RequestAuth",
    "Validator",
    "guarded",
    "has_role",
    "is_admin",
    "jwt_federated",
    "jwt_user",
    "public_route",
    "request_auth",
    "session_valid",
    "token_kind",
    "validate_route_auth_policy",
]
