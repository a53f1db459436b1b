"""Auth core settings: session cookie keys, token lifetimes, key files, directory."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from identity.validators import RawEnvSettingsSource, check_key_length, parse_env_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource

SESSION_KEY_BYTES = 64
SESSION_ENCRYPTION_KEY_BYTES = 32

MAX_AGE_7_DAYS_SECS = 7 * 24 * 3600
TTL_7_DAYS_MINS = 7 * 24 * 60


class AuthSettings(BaseSettings):
    model_config = {"env_file": ("consts.env", "version.env"), "extra": "ignore"}

    # Session cookie. Both keys are required, no defaults: the application
    # fails to start if SESSION_KEY or SESSION_ENCRYPTION_KEY is not set.
    session_name: str = Field(default="session", min_length=1)
    session_key: str  # HMAC-SHA256 authentication key
    session_encryption_key: str  # AES-256 encryption key
    session_max_age_secs: int = Field(default=MAX_AGE_7_DAYS_SECS, ge=60)
    # Secure flag -- True in production; browsers only send SameSite=None cookies over HTTPS
    session_cookie_secure: bool = True

    # Token lifetimes in minutes
    passwordless_token_ttl_mins: int = Field(default=10, ge=1)
    access_token_ttl_mins: int = Field(default=15, ge=1)
    otp_token_ttl_mins: int = Field(default=20, ge=1)
    short_ttl_mins: int = Field(default=10, ge=1)
    refresh_token_ttl_mins: int = Field(default=TTL_7_DAYS_MINS, ge=1)

    # PEM key files. When jwt_keys_dir is set it replaces the two first-party
    # paths and every <kid>.key / <kid>.key.pub pair in it is loaded.
    jwt_private_key_path: str = "jwtRS256.key"
    jwt_public_key_path: str = "jwtRS256.key.pub"
    auth0_public_key_path: str = "auth0.key.pub"
    jwt_keys_dir: str | None = None

    jwt_issuer: str = Field(default="edb", min_length=1)
    auth0_issuer: str = Field(min_length=1)  # required, federated tokens must carry this iss
    auth0_audience: str | None = None
    auth0_email_claim: str = "email"
    auth0_email_verified_claim: str = "email_verified"

    database_path: str = "data/users.db"
    password_hasher: str = "bcrypt"
    default_roles: list[str] = ["SIGNIN"]

    @field_validator("session_key")
    @classmethod
    def validate_session_key(cls, v: str) -> str:
        return check_key_length(v, SESSION_KEY_BYTES, "SESSION_KEY")

    @field_validator("session_encryption_key")
    @classmethod
    def validate_session_encryption_key(cls, v: str) -> str:
        return check_key_length(v, SESSION_ENCRYPTION_KEY_BYTES, "SESSION_ENCRYPTION_KEY")

    @field_validator("password_hasher")
    @classmethod
    def validate_password_hasher(cls, v: str) -> str:
        if v not in {"bcrypt", "simple"}:
            raise ValueError(f"Unknown password hasher {v!r}; expected 'bcrypt' or 'simple'")
        return v

    @field_validator("default_roles", mode="before")
    @classmethod
    def validate_default_roles(cls, v: str | list[str]) -> list[str]:
        return parse_env_list(v)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, RawEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
