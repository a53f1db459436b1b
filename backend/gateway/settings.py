"""Gateway configuration via environment variables and the consts/version env files."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from identity.validators import RawEnvSettingsSource, parse_env_list, parse_env_map

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class GatewaySettings(BaseSettings):
    model_config = {"env_file": ("consts.env", "version.env"), "extra": "ignore"}

    name: str = "edb-gateway"
    app_name: str = "edb"
    app_url: str = ""
    app_domain: str = ""
    version: str = "dev"
    updated: str = ""
    copyright: str = ""
    app_env: Literal["development", "production"] = "production"

    redis_addr: str = ""  # host:port; empty publishes emails to an in-memory log instead
    redis_username: str = ""
    redis_password: str = ""
    email_queue_channel: str = "email-queue"

    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8080

    cors_origins: list[str] = []
    log_dir: str | None = None

    # Genomics module name -> upstream base URL. Entries from modules_config_path
    # (YAML, "modules:" list of name/url) are merged under these.
    module_upstreams: dict[str, str] = {}
    modules_config_path: Path | None = None
    dependency_timeout_secs: float = Field(default=5.0, gt=0)

    # Link targets for emails; relative to app_url when not absolute
    verify_email_url: str = "/account/verify"
    reset_password_url: str = "/account/password/reset"
    passwordless_url: str = "/account/signin/passwordless"
    change_email_url: str = "/account/email/update"

    @field_validator("cors_origins", mode="before")
    @classmethod
    def validate_cors_origins(cls, v: str | list[str]) -> list[str]:
        return parse_env_list(v)

    @field_validator("module_upstreams", mode="before")
    @classmethod
    def validate_module_upstreams(cls, v: str | dict[str, str]) -> dict[str, str]:
        return parse_env_map(v)

    def link(self, path: str) -> str:
        """Resolve an email link path against APP_URL."""
        if path.startswith(("http://", "https://")) or not self.app_url:
            return path
        return self.app_url.rstrip("/") + "/" + path.lstrip("/")

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
