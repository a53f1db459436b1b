"""RSA key material for signing and verifying tokens.

Keys are read once at startup and never reloaded; rotating keys requires a
restart. Any missing, malformed or mismatched key is fatal so the process never
starts partially configured.

Two layouts are supported:

- single pair: ``JWT_PRIVATE_KEY_PATH`` + ``JWT_PUBLIC_KEY_PATH``
- key directory: every ``<name>.key`` / ``<name>.key.pub`` pair in ``JWT_KEYS_DIR``.
  The newest pair (by modification time) signs; all pairs verify.

Each public key is identified by a key id derived from its SPKI encoding, carried
in the ``kid`` header of every minted token.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

if TYPE_CHECKING:
    from identity.settings import AuthSettings

logger = structlog.get_logger()

_KID_HEX_CHARS = 16


class KeyStoreError(Exception):
    """A key file is missing, malformed, or inconsistent."""


@dataclass(frozen=True)
class KeyStore:
    signing_key: rsa.RSAPrivateKey
    signing_kid: str
    first_party_keys: dict[str, rsa.RSAPublicKey]
    federated_key: rsa.RSAPublicKey

    @classmethod
    def load(cls, settings: AuthSettings) -> KeyStore:
        """Load all keys named by the settings. Raises KeyStoreError on any problem."""
        if settings.jwt_keys_dir:
            pairs = _read_key_dir(Path(settings.jwt_keys_dir))
        else:
            pairs = [_read_pair(Path(settings.jwt_private_key_path), Path(settings.jwt_public_key_path))]

        signing_key, signing_public = pairs[-1]
        first_party = {key_id(public): public for _, public in pairs}
        federated = load_public_key(Path(settings.auth0_public_key_path))

        store = cls(
            signing_key=signing_key,
            signing_kid=key_id(signing_public),
            first_party_keys=first_party,
            federated_key=federated,
        )
        logger.info("keys loaded", signing_kid=store.signing_kid, verification_keys=len(first_party))
        return store

    @property
    def public_key(self) -> rsa.RSAPublicKey:
        return self.first_party_keys[self.signing_kid]


def key_id(public_key: rsa.RSAPublicKey) -> str:
    """Return a short stable identifier for a public key."""
    der = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return hashlib.sha256(der).hexdigest()[:_KID_HEX_CHARS]


def load_private_key(path: Path) -> rsa.RSAPrivateKey:
    """Read an unencrypted PEM RSA private key (PKCS#1 or PKCS#8)."""
    data = _read_file(path)
    try:
        key = serialization.load_pem_private_key(data, password=None)
    except (ValueError, TypeError, UnsupportedAlgorithm) as exc:
        raise KeyStoreError(f"Malformed private key in {path}: {exc}") from exc
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyStoreError(f"Private key in {path} is not an RSA key")
    return key


def load_public_key(path: Path) -> rsa.RSAPublicKey:
    """Read a PEM RSA public key (SubjectPublicKeyInfo or PKCS#1)."""
    data = _read_file(path)
    try:
        key = serialization.load_pem_public_key(data)
    except (ValueError, UnsupportedAlgorithm) as exc:
        raise KeyStoreError(f"Malformed public key in {path}: {exc}") from exc
    if not isinstance(key, rsa.RSAPublicKey):
        raise KeyStoreError(f"Public key in {path} is not an RSA key")
    return key


def _read_file(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise KeyStoreError(f"Cannot read key file {path}: {exc}") from exc


def _read_pair(private_path: Path, public_path: Path) -> tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]:
    private = load_private_key(private_path)
    public = load_public_key(public_path)
    if private.public_key().public_numbers() != public.public_numbers():
        raise KeyStoreError(f"Public key {public_path} does not match private key {private_path}")
    return private, public


def _read_key_dir(directory: Path) -> list[tuple[rsa.RSAPrivateKey, rsa.RSAPublicKey]]:
    """Load every key pair in a directory, oldest first."""
    if not directory.is_dir():
        raise KeyStoreError(f"Key directory {directory} does not exist")

    private_paths = sorted(directory.glob("*.key"), key=lambda p: (p.stat().st_mtime, p.name))
    if not private_paths:
        raise KeyStoreError(f"No *.key files in {directory}")

    return [_read_pair(path, path.with_name(f"{path.name}.pub")) for path in private_paths]
