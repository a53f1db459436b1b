"""Typed per-request auth state.

One ``RequestAuth`` is installed in ``request.state`` for every HTTP request by
the error-collection middleware. Guards and validator steps fill it in; handlers
read the verified values from it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from starlette.requests import Request
    from starlette.types import Scope

    from identity.errors import ApiError
    from identity.models import AuthUser, FederatedClaims, SessionData, TokenClaims

STATE_KEY = "auth"


class SessionChange(Enum):
    NONE = "none"
    WRITE = "write"
    CLEAR = "clear"


@dataclass
class RequestAuth:
    token: str = ""
    claims: TokenClaims | None = None
    federated: FederatedClaims | None = None
    auth_user: AuthUser | None = None
    session: SessionData | None = None
    errors: list[ApiError] = field(default_factory=list)
    session_change: SessionChange = SessionChange.NONE

    def record(self, error: ApiError) -> None:
        self.errors.append(error)

    @property
    def failed(self) -> bool:
        return bool(self.errors)

    @property
    def first_error(self) -> ApiError | None:
        return self.errors[0] if self.errors else None

    @property
    def last_error(self) -> ApiError | None:
        return self.errors[-1] if self.errors else None

    def start_session(self, data: SessionData) -> None:
        """Write ``data`` to the session cookie when the response goes out."""
        self.session = data
        self.session_change = SessionChange.WRITE

    def end_session(self) -> None:
        self.session = None
        self.session_change = SessionChange.CLEAR


def install_request_auth(scope: Scope) -> RequestAuth:
    auth = RequestAuth()
    scope.setdefault("state", {})[STATE_KEY] = auth
    return auth


def request_auth(request: Request) -> RequestAuth:
    """Return the request's auth state, installing one if no middleware did."""
    auth = request.scope.get("state", {}).get(STATE_KEY)
    if auth is None:
        auth = install_request_auth(request.scope)
    return auth
