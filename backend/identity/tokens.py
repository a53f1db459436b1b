"""Mint and verify RS256 tokens.

First-party tokens are signed with the key store's signing key and carry their
kind in the ``type`` claim. Verifiers always pass the trust context they expect
(``KeyRole``) and callers must still assert the kind; a verified token is not an
authorized one.

One-time tokens carry an OTP derived from the user's current password hash, email
and verification time, so any of those changing invalidates outstanding tokens
without server-side storage.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import TYPE_CHECKING, Any

import jwt

from identity.models import FederatedClaims, TokenClaims, TokenKind

if TYPE_CHECKING:
    from cryptography.hazmat.primitives.asymmetric import rsa

    from identity.keys import KeyStore
    from identity.models import AuthUser
    from identity.settings import AuthSettings

ALGORITHM = "RS256"

_NONCE_BYTES = 16
_TOKEN_ID_BYTES = 12


class KeyRole(StrEnum):
    """Which public key a token must verify against."""

    FIRST_PARTY = "first_party"
    FEDERATED = "federated"


class TokenError(Exception):
    """Base class for token verification failures."""


class TokenExpired(TokenError):
    pass


class TokenMalformed(TokenError):
    pass


class TokenSignatureInvalid(TokenError):
    pass


class TokenIssuerMismatch(TokenError):
    pass


class UnknownTokenKind(TokenError):
    pass


class TokenCodec:
    """Mint first-party tokens and verify first-party or federated ones."""

    def __init__(self, keys: KeyStore, settings: AuthSettings) -> None:
        self._keys = keys
        self._issuer = settings.jwt_issuer
        self._federated_issuer = settings.auth0_issuer
        self._federated_audience = settings.auth0_audience
        self._email_claim = settings.auth0_email_claim
        self._email_verified_claim = settings.auth0_email_verified_claim

        short = timedelta(minutes=settings.short_ttl_mins)
        self._ttls = {
            TokenKind.VERIFY_EMAIL: short,
            TokenKind.CHANGE_EMAIL: short,
            TokenKind.RESET_PASSWORD: short,
            TokenKind.PASSWORDLESS: timedelta(minutes=settings.passwordless_token_ttl_mins),
            TokenKind.ACCESS: timedelta(minutes=settings.access_token_ttl_mins),
            TokenKind.REFRESH: timedelta(minutes=settings.refresh_token_ttl_mins),
            TokenKind.OTP: timedelta(minutes=settings.otp_token_ttl_mins),
        }

    def ttl(self, kind: TokenKind) -> timedelta:
        return self._ttls[kind]

    def mint(
        self,
        kind: TokenKind,
        user_id: str,
        *,
        roles: str | None = None,
        otp: str | None = None,
        redirect_url: str | None = None,
        email: str | None = None,
    ) -> str:
        """Return a compact signed token of the given kind for ``user_id``."""
        now = datetime.now(UTC).replace(microsecond=0)
        payload: dict[str, Any] = {
            "userId": user_id,
            "type": kind.value,
            "iat": now,
            "exp": now + self._ttls[kind],
            "iss": self._issuer,
            "jti": secrets.token_urlsafe(_TOKEN_ID_BYTES),
        }
        if roles is not None:
            payload["roles"] = roles
        if otp:
            payload["otp"] = otp
        if redirect_url:
            payload["redirectUrl"] = redirect_url
        if email:
            payload["email"] = email

        return jwt.encode(payload, self._keys.signing_key, algorithm=ALGORITHM, headers={"kid": self._keys.signing_kid})

    def verify(self, token: str, key_role: KeyRole) -> TokenClaims | FederatedClaims:
        """Verify signature, expiry and issuer. Raises a TokenError subclass on failure."""
        if key_role is KeyRole.FEDERATED:
            return self.verify_federated(token)
        return self.verify_first_party(token)

    def verify_first_party(self, token: str) -> TokenClaims:
        key = self._first_party_key(token)
        payload = _decode(token, key, issuer=self._issuer, audience=None)

        try:
            kind = TokenKind(payload.get("type", ""))
        except ValueError as exc:
            raise UnknownTokenKind(f"unknown token kind {payload.get('type')!r}") from exc

        user_id = payload.get("userId")
        if not isinstance(user_id, str) or not user_id:
            raise TokenMalformed("token has no userId")

        return TokenClaims(
            user_id=user_id,
            kind=kind,
            roles=payload.get("roles", ""),
            otp=payload.get("otp", ""),
            redirect_url=payload.get("redirectUrl", ""),
            email=payload.get("email", ""),
            issued_at=datetime.fromtimestamp(payload["iat"], UTC),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
            issuer=payload["iss"],
            token_id=payload.get("jti", ""),
        )

    def verify_federated(self, token: str) -> FederatedClaims:
        payload = _decode(
            token,
            self._keys.federated_key,
            issuer=self._federated_issuer,
            audience=self._federated_audience,
        )

        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub:
            raise TokenMalformed("federated token has no subject")

        aud = payload.get("aud", [])
        return FederatedClaims(
            sub=sub,
            email=payload.get(self._email_claim) or "",
            email_verified=payload.get(self._email_verified_claim) is True,
            name=payload.get("name") or "",
            audience=[aud] if isinstance(aud, str) else list(aud),
            issuer=payload.get("iss", ""),
            expires_at=datetime.fromtimestamp(payload["exp"], UTC),
        )

    def _first_party_key(self, token: str) -> rsa.RSAPublicKey:
        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as exc:
            raise TokenMalformed("token is not a valid JWT") from exc

        kid = header.get("kid")
        if kid is None and len(self._keys.first_party_keys) == 1:
            return self._keys.public_key
        key = self._keys.first_party_keys.get(kid)
        if key is None:
            raise TokenSignatureInvalid("token was not signed by a known key")
        return key


def _decode(token: str, key: rsa.RSAPublicKey, *, issuer: str, audience: str | None) -> dict[str, Any]:
    try:
        return jwt.decode(
            token,
            key,
            algorithms=[ALGORITHM],
            issuer=issuer,
            audience=audience,
            options={"require": ["exp", "iat", "iss"], "verify_aud": audience is not None},
        )
    except jwt.ExpiredSignatureError as exc:
        raise TokenExpired("token has expired") from exc
    except jwt.InvalidSignatureError as exc:
        raise TokenSignatureInvalid("token signature is invalid") from exc
    except (jwt.InvalidIssuerError, jwt.InvalidAudienceError) as exc:
        raise TokenIssuerMismatch(str(exc)) from exc
    except jwt.InvalidTokenError as exc:
        raise TokenMalformed(str(exc)) from exc


def derive_otp(user: AuthUser) -> str:
    """Fingerprint the parts of a user record that one-time tokens are bound to."""
    material = f"{user.uuid}|{user.password_hash}|{user.email}|{user.email_verified_at}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def check_otp(user: AuthUser, otp: str) -> bool:
    if not otp:
        return False
    return hmac.compare_digest(derive_otp(user).encode("utf-8"), otp.encode("utf-8"))


def new_nonce() -> str:
    """Random OTP for passwordless tokens, which are not bound to a password hash."""
    return secrets.token_urlsafe(_NONCE_BYTES)
