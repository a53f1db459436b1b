"""Encrypted, authenticated session cookies.

A cookie value is unpadded ``base64url("<timestamp>|<b64 iv+ciphertext>|<b64 mac>")``.
The payload is AES-256-CTR encrypted with a fresh random IV, then authenticated
with HMAC-SHA256 over ``name|timestamp|payload`` so a value cannot be replayed
under a different cookie name. Decoding rejects bad MACs and stale timestamps.

Sessions hold only a ``SessionData`` snapshot, never tokens or password hashes.
"""

from __future__ import annotations

import base64
import binascii
import os
import time
from typing import TYPE_CHECKING

import structlog
from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from pydantic import ValidationError

from identity.models import SessionData
from identity.settings import SESSION_ENCRYPTION_KEY_BYTES, SESSION_KEY_BYTES

if TYPE_CHECKING:
    from starlette.responses import Response

    from identity.models import AuthUser
    from identity.settings import AuthSettings

logger = structlog.get_logger()

_IV_BYTES = 16
_SEPARATOR = b"|"


class CookieError(Exception):
    """A cookie value is malformed, forged, or stale."""


def _b64encode(data: bytes) -> bytes:
    return base64.urlsafe_b64encode(data)


def _b64decode(data: bytes) -> bytes:
    try:
        return base64.urlsafe_b64decode(data)
    except (binascii.Error, ValueError) as exc:
        raise CookieError("invalid base64") from exc


class SecureCookie:
    def __init__(self, hash_key: bytes, block_key: bytes, *, max_age_secs: int) -> None:
        if len(hash_key) != SESSION_KEY_BYTES:
            raise ValueError(f"hash key must be {SESSION_KEY_BYTES} bytes")
        if len(block_key) != SESSION_ENCRYPTION_KEY_BYTES:
            raise ValueError(f"block key must be {SESSION_ENCRYPTION_KEY_BYTES} bytes")
        self._hash_key = hash_key
        self._block_key = block_key
        self._max_age = max_age_secs

    def encode(self, name: str, value: bytes, *, now: float | None = None) -> str:
        iv = os.urandom(_IV_BYTES)
        encryptor = Cipher(algorithms.AES(self._block_key), modes.CTR(iv)).encryptor()
        payload = _b64encode(iv + encryptor.update(value) + encryptor.finalize())

        timestamp = str(int(time.time() if now is None else now)).encode()
        mac = self._mac(name, timestamp, payload)
        return _b64encode(_SEPARATOR.join((timestamp, payload, _b64encode(mac)))).decode("ascii").rstrip("=")

    def decode(self, name: str, cookie: str, *, now: float | None = None) -> bytes:
        padded = cookie + "=" * (-len(cookie) % 4)
        parts = _b64decode(padded.encode("ascii", errors="replace")).split(_SEPARATOR)
        if len(parts) != 3:  # noqa: PLR2004
            raise CookieError("wrong number of fields")
        timestamp, payload, encoded_mac = parts

        verifier = hmac.HMAC(self._hash_key, hashes.SHA256())
        verifier.update(_SEPARATOR.join((name.encode(), timestamp, payload)))
        try:
            verifier.verify(_b64decode(encoded_mac))
        except InvalidSignature as exc:
            raise CookieError("mac mismatch") from exc

        try:
            issued = int(timestamp)
        except ValueError as exc:
            raise CookieError("invalid timestamp") from exc
        current = time.time() if now is None else now
        if issued < current - self._max_age:
            raise CookieError("cookie expired")

        raw = _b64decode(payload)
        if len(raw) < _IV_BYTES:
            raise CookieError("payload too short")
        decryptor = Cipher(algorithms.AES(self._block_key), modes.CTR(raw[:_IV_BYTES])).decryptor()
        return decryptor.update(raw[_IV_BYTES:]) + decryptor.finalize()

    def _mac(self, name: str, timestamp: bytes, payload: bytes) -> bytes:
        signer = hmac.HMAC(self._hash_key, hashes.SHA256())
        signer.update(_SEPARATOR.join((name.encode(), timestamp, payload)))
        return signer.finalize()


class SessionStore:
    """Read and write the session cookie."""

    def __init__(self, settings: AuthSettings) -> None:
        self.cookie_name = settings.session_name
        self.max_age = settings.session_max_age_secs
        self._secure = settings.session_cookie_secure
        self._codec = SecureCookie(
            settings.session_key.encode("utf-8"),
            settings.session_encryption_key.encode("utf-8"),
            max_age_secs=settings.session_max_age_secs,
        )

    def new_session(self, user: AuthUser, *, refresh_token_fingerprint: str | None = None) -> SessionData:
        return SessionData(
            auth_user=user.snapshot(),
            created_at=int(time.time()),
            refresh_token_fingerprint=refresh_token_fingerprint,
        )

    def encode(self, data: SessionData) -> str:
        return self._codec.encode(self.cookie_name, data.model_dump_json(by_alias=True).encode("utf-8"))

    def decode(self, value: str | None) -> SessionData | None:
        """Return the session in a cookie value, or None if absent, corrupt, or expired."""
        if not value:
            return None
        try:
            raw = self._codec.decode(self.cookie_name, value)
            data = SessionData.model_validate_json(raw)
        except (CookieError, ValidationError) as exc:
            logger.info("session cookie rejected", reason=str(exc).splitlines()[0])
            return None
        if data.created_at + self.max_age < time.time():
            return None
        return data

    def write(self, response: Response, data: SessionData) -> None:
        response.set_cookie(
            self.cookie_name,
            self.encode(data),
            max_age=self.max_age,
            path="/",
            secure=self._secure,
            httponly=True,
            samesite="none",
        )

    def clear(self, response: Response) -> None:
        response.delete_cookie(
            self.cookie_name,
            path="/",
            secure=self._secure,
            httponly=True,
            samesite="none",
        )
