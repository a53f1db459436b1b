"""Root conftest: load test environment variables, configure structlog, and provide RSA key fixtures."""

from datetime import UTC, datetime, timedelta
from pathlib import Path
from types import SimpleNamespace

import jwt
import pytest
import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa
from dotenv import load_dotenv

load_dotenv(Path(__file__).resolve().parent.parent / ".env.tests")

# Configure structlog to route through stdlib logging so caplog works in tests.
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=False,
)

FEDERATED_ISSUER = "https://idp.test/"
FEDERATED_AUDIENCE = "edb-test"


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Prevent context leaking between tests."""
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


def generate_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


def private_pem(key: rsa.RSAPrivateKey, *, pkcs1: bool = False) -> bytes:
    return key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL if pkcs1 else serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )


def public_pem(key: rsa.RSAPrivateKey) -> bytes:
    return key.public_key().public_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )


@pytest.fixture
def pem():
    """PEM helpers for tests that write their own key files."""
    return SimpleNamespace(generate=generate_rsa_key, private=private_pem, public=public_pem)


@pytest.fixture(scope="session")
def first_party_key() -> rsa.RSAPrivateKey:
    return generate_rsa_key()


@pytest.fixture(scope="session")
def federated_key() -> rsa.RSAPrivateKey:
    return generate_rsa_key()


@pytest.fixture
def key_files(tmp_path, first_party_key, federated_key) -> dict[str, Path]:
    """Write the first-party pair and the federated public key as PEM files."""
    key_dir = tmp_path / "keys"
    key_dir.mkdir()
    paths = {
        "private": key_dir / "jwtRS256.key",
        "public": key_dir / "jwtRS256.key.pub",
        "federated": key_dir / "auth0.key.pub",
    }
    paths["private"].write_bytes(private_pem(first_party_key))
    paths["public"].write_bytes(public_pem(first_party_key))
    paths["federated"].write_bytes(public_pem(federated_key))
    return paths


@pytest.fixture
def auth_settings(tmp_path, key_files):
    from identity.settings import AuthSettings

    return AuthSettings(
        jwt_private_key_path=str(key_files["private"]),
        jwt_public_key_path=str(key_files["public"]),
        auth0_public_key_path=str(key_files["federated"]),
        auth0_issuer=FEDERATED_ISSUER,
        auth0_audience=FEDERATED_AUDIENCE,
        database_path=str(tmp_path / "users.db"),
    )


@pytest.fixture
def federated_token(federated_key):
    """Build a token as the federated identity provider would sign it."""

    def build(
        email: str = "fed@example.com",
        *,
        email_verified: bool = True,
        signing_key: rsa.RSAPrivateKey | None = None,
        issuer: str = FEDERATED_ISSUER,
        expires_in: timedelta = timedelta(minutes=5),
    ) -> str:
        now = datetime.now(UTC)
        payload = {
            "sub": f"idp|{email}",
            "email": email,
            "email_verified": email_verified,
            "name": "Fed User",
            "aud": FEDERATED_AUDIENCE,
            "iss": issuer,
            "iat": now,
            "exp": now + expires_in,
        }
        return jwt.encode(payload, signing_key or federated_key, algorithm="RS256")

    return build
