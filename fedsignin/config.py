"""Configuration system for fedsignin using pydantic-settings.

Supports layered configuration:
1. Built-in defaults (lowest priority)
2. pyproject.toml [tool.fedsignin] section (project-level)
3. ./fedsignin.toml (project-level, explicit)
4. The file named by FEDSIGNIN_CONFIG_FILE
5. Environment variables (highest priority)

Environment variables use the FEDSIGNIN_ prefix with nested delimiter __.
Example: FEDSIGNIN_AUTH__CONFIG_PATH, FEDSIGNIN_TOOLKIT__API_KEY

These are process settings. The provider configuration itself (provider
references, custom parameters, scopes) lives in a properties file that is
parsed by ``fedsignin.auth.config_store``.
"""

from __future__ import annotations

import os
import tomllib

from functools import lru_cache
from pathlib import Path
from typing import Any, Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _find_config_files() -> list[Path]:
    """Find all configuration files in order of precedence (lowest first)."""
    files = []

    pyproject = Path("pyproject.toml")
    if pyproject.exists():
        files.append(pyproject)

    explicit = Path("fedsignin.toml")
    if explicit.exists():
        files.append(explicit)

    env_config = os.environ.get("FEDSIGNIN_CONFIG_FILE")
    if env_config:
        env_path = Path(env_config)
        if env_path.exists():
            files.append(env_path)

    return files


def _load_toml_config() -> dict[str, Any]:
    """Load and merge all TOML configuration files."""
    merged: dict[str, Any] = {}

    for config_file in _find_config_files():
        try:
            data = tomllib.loads(config_file.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError):
            continue  # Unreadable settings files fall back to defaults

        if config_file.name == "pyproject.toml":
            data = data.get("tool", {}).get("fedsignin", {})

        merged = _deep_merge(merged, data)

    return merged


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _drop_env_overridden(data: dict[str, Any], prefix: str = "FEDSIGNIN_") -> dict[str, Any]:
    """Remove TOML values whose FEDSIGNIN_ environment variable is set."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        env_name = f"{prefix}{key.upper()}"
        if isinstance(value, dict):
            result[key] = _drop_env_overridden(value, f"{env_name}__")
        elif env_name not in os.environ:
            result[key] = value
    return result


# Field names that contain sensitive data and must be redacted in output.
_SENSITIVE_FIELDS: set[str] = {"api_key"}

_REDACTED = "********"

# (display name, env prefix, attribute) for each settings section.
_SETTINGS_SECTIONS = (
    ("Logging", "LOG", "log"),
    ("Sign-in", "AUTH", "auth"),
    ("Identity Toolkit", "TOOLKIT", "toolkit"),
)


class LogSettings(BaseSettings):
    """Logging settings.

    Environment prefix: FEDSIGNIN_LOG__
    Example: FEDSIGNIN_LOG__LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_prefix="FEDSIGNIN_LOG__",
        extra="ignore",
    )

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "WARNING"
    format: str = "%(name)s - %(levelname)s - %(message)s"


class AuthSettings(BaseSettings):
    """Sign-in orchestration settings.

    Environment prefix: FEDSIGNIN_AUTH__
    Example: FEDSIGNIN_AUTH__CONFIG_PATH=/etc/myapp/config.properties
    """

    model_config = SettingsConfigDict(
        env_prefix="FEDSIGNIN_AUTH__",
        extra="ignore",
    )

    config_path: Path = Field(
        default=Path("config.properties"),
        description="Provider configuration properties file",
    )
    web_client_id: str = Field(
        default="",
        description="OAuth client ID used for the native Google credential flow",
    )


class IdentityToolkitSettings(BaseSettings):
    """Identity Toolkit REST backend settings.

    Environment prefix: FEDSIGNIN_TOOLKIT__
    Example: FEDSIGNIN_TOOLKIT__API_KEY=AIza...
    """

    model_config = SettingsConfigDict(
        env_prefix="FEDSIGNIN_TOOLKIT__",
        extra="ignore",
    )

    api_key: str = Field(default="", description="Web API key of the identity project")
    base_url: str = Field(
        default="https://identitytoolkit.googleapis.com/v1",
        description="Identity Toolkit REST base URL",
    )
    token_url: str = Field(
        default="https://securetoken.googleapis.com/v1/token",
        description="Secure token endpoint used for ID token refresh",
    )
    timeout_seconds: float = Field(default=30.0, gt=0, description="HTTP request timeout")
    handshake_timeout_seconds: float = Field(
        default=300.0,
        ge=10.0,
        description="Maximum seconds to wait for the browser redirect",
    )


class FedSignInSettings(BaseSettings):
    """Main settings aggregating all configuration sections.

    Environment prefix: FEDSIGNIN_
    """

    model_config = SettingsConfigDict(
        env_prefix="FEDSIGNIN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    log: LogSettings = Field(default_factory=LogSettings)
    auth: AuthSettings = Field(default_factory=AuthSettings)
    toolkit: IdentityToolkitSettings = Field(default_factory=IdentityToolkitSettings)

    def __init__(self, **data: Any) -> None:
        # Keyword arguments are applied above environment variables by
        # pydantic-settings, so TOML values the environment sets are dropped.
        toml_config = _drop_env_overridden(_load_toml_config())
        super().__init__(**_deep_merge(toml_config, data))

    def to_env(self) -> str:
        """Export settings as shell environment variables."""
        lines = [
            "# fedsignin Environment Variables",
            "# Generated by: fedsignin config --env",
            "",
        ]
        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, _, attr in _SETTINGS_SECTIONS},
        )
        for _, env_prefix, attr_name in _SETTINGS_SECTIONS:
            for field_name, field_value in all_data.get(attr_name, {}).items():
                env_name = f"FEDSIGNIN_{env_prefix}__{field_name.upper()}"
                lines.append(f'export {env_name}="{field_value}"')
            section_cls = type(getattr(self, attr_name))
            for redacted_name in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys()):
                env_name = f"FEDSIGNIN_{env_prefix}__{redacted_name.upper()}"
                lines.append(f'export {env_name}="{_REDACTED}"')
        return "\n".join(lines)

    def show(self) -> str:
        """Format settings as a readable table."""
        lines = ["fedsignin Configuration", "=" * 60]
        all_data = self.model_dump(
            exclude={attr: _SENSITIVE_FIELDS for _, _, attr in _SETTINGS_SECTIONS},
        )
        for display_name, _, attr_name in _SETTINGS_SECTIONS:
            lines.append(f"\n{display_name}")
            lines.append("-" * 40)
            for field_name, field_value in all_data.get(attr_name, {}).items():
                value_str = str(field_value)
                if len(value_str) > 50:
                    value_str = value_str[:47] + "..."
                lines.append(f"  {field_name:26} = {value_str}")
            section_cls = type(getattr(self, attr_name))
            lines.extend(
                f"  {rn:26} = {_REDACTED}"
                for rn in sorted(_SENSITIVE_FIELDS & section_cls.model_fields.keys())
            )
        return "\n".join(lines)


@lru_cache(maxsize=1)
def get_settings() -> FedSignInSettings:
    """Get the global settings instance (cached).

    Call clear_settings() to reload configuration.
    """
    return FedSignInSettings()


def clear_settings() -> None:
    """Clear the cached settings to force reload."""
    get_settings.cache_clear()


def reload_settings() -> FedSignInSettings:
    """Reload settings from all sources."""
    clear_settings()
    return get_settings()
