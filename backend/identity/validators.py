"""Parsers for settings that arrive as single environment strings."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from pydantic_settings import EnvSettingsSource

if TYPE_CHECKING:
    from pydantic.fields import FieldInfo


def _load_json(text: str, expected: type, label: str) -> Any:  # noqa: ANN401
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON {label}: {e}") from e
    if not isinstance(parsed, expected):
        raise ValueError(f"JSON value must be an {label} of strings")
    return parsed


def parse_env_list(value: str | list[str]) -> list[str]:
    """Read a list such as CORS_ORIGINS or DEFAULT_ROLES.

    Takes a JSON array (``["a","b"]``) or a comma list (``a, b``). Blank
    entries are dropped and an empty value means an empty list.
    """
    if isinstance(value, list):
        return value
    text = value.strip()
    if text.startswith("["):
        items = _load_json(text, list, "array")
        if not all(isinstance(item, str) for item in items):
            raise ValueError("JSON value must be an array of strings")
        return items
    return [item.strip() for item in text.split(",") if item.strip()]


def parse_env_map(value: str | dict[str, str]) -> dict[str, str]:
    """Read a JSON object of strings such as MODULE_UPSTREAMS. Empty means ``{}``."""
    if isinstance(value, dict):
        return value
    text = value.strip()
    if not text:
        return {}
    mapping = _load_json(text, dict, "object")
    if not all(isinstance(v, str) for v in mapping.values()):
        raise ValueError("JSON value must be an object of strings")
    return mapping


def check_key_length(value: str, expected: int, name: str) -> str:
    """Require a secret to be exactly ``expected`` bytes once UTF-8 encoded."""
    if len(value.encode("utf-8")) != expected:
        raise ValueError(f"{name} must be exactly {expected} bytes")
    return value


RAW_ENV_FIELDS = frozenset({"cors_origins", "default_roles", "module_upstreams"})


class RawEnvSettingsSource(EnvSettingsSource):
    """Hands the fields in RAW_ENV_FIELDS to their validators as the raw env string.

    Without this, pydantic-settings JSON-decodes list and dict fields itself and
    rejects the comma-list and empty forms before the validators see them.
    """

    def prepare_field_value(
        self,
        field_name: str,
        field: FieldInfo,
        value: Any,  # noqa: ANN401
        value_is_complex: bool,  # noqa: FBT001
    ) -> Any:  # noqa: ANN401
        if field_name in RAW_ENV_FIELDS and isinstance(value, str):
            return value
        return super().prepare_field_value(field_name, field, value, value_is_complex)
