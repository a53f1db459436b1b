"""User, token claim, and session models for the auth core."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

_CAMEL = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)


class TokenKind(StrEnum):
    VERIFY_EMAIL = "VERIFY_EMAIL"
    PASSWORDLESS = "PASSWORDLESS"
    RESET_PASSWORD = "RESET_PASSWORD"
    CHANGE_EMAIL = "CHANGE_EMAIL"
    REFRESH = "REFRESH"
    ACCESS = "ACCESS"
    OTP = "OTP"


ONE_TIME_KINDS = frozenset({TokenKind.VERIFY_EMAIL, TokenKind.RESET_PASSWORD, TokenKind.CHANGE_EMAIL})
ROLE_BEARING_KINDS = frozenset({TokenKind.ACCESS, TokenKind.REFRESH})


class AuthUser(BaseModel):
    """Identity record held by the user directory."""

    model_config = _CAMEL

    uuid: str
    username: str
    email: str
    first_name: str = ""
    email_verified_at: int = 0  # unix seconds; 0 means unverified
    password_hash: str = ""  # empty for passwordless-only accounts
    api_key_hash: str | None = None  # SHA-256 of the issued API key

    @property
    def is_verified(self) -> bool:
        return self.email_verified_at > 0

    def snapshot(self) -> UserSnapshot:
        return UserSnapshot(
            uuid=self.uuid,
            username=self.username,
            email=self.email,
            first_name=self.first_name,
            email_verified_at=self.email_verified_at,
        )


class UserSnapshot(BaseModel):
    """The parts of an AuthUser that may leave the server (responses, session cookies)."""

    model_config = _CAMEL

    uuid: str
    username: str
    email: str
    first_name: str = ""
    email_verified_at: int = 0

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True)


class TokenClaims(BaseModel):
    """Verified claims of a first-party token."""

    model_config = _CAMEL

    user_id: str
    kind: TokenKind
    roles: str = ""  # role claim; only on ACCESS and REFRESH
    otp: str = ""  # one-time passcode; only on one-time kinds and PASSWORDLESS
    redirect_url: str = ""  # only on PASSWORDLESS
    email: str = ""  # only on CHANGE_EMAIL: the address being switched to
    issued_at: datetime
    expires_at: datetime
    issuer: str
    token_id: str = ""


class FederatedClaims(BaseModel):
    """Verified claims issued by the federated identity provider."""

    model_config = _CAMEL

    sub: str
    email: str = ""
    email_verified: bool = False
    name: str = ""
    audience: list[str] = Field(default_factory=list)
    issuer: str
    expires_at: datetime


class SessionData(BaseModel):
    """Payload stored in the encrypted session cookie."""

    model_config = _CAMEL

    auth_user: UserSnapshot
    created_at: int  # unix seconds
    refresh_token_fingerprint: str | None = None
