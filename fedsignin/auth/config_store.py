"""Provider configuration loading, validation and caching.

The provider configuration is a Java-style properties file::

    oidc.provider.id=oidc.okta
    saml.provider.id=saml.adfs
    oidc.custom.params=tenant=abc123,domain=example.com
    oidc.scopes=openid,email,profile
    oidc.development.mode=false

Parsing is lenient (malformed custom parameters are dropped one by one)
while validation is strict (provider references must carry the right
prefix and at least one must be present).
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import os
import threading

from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import IO, Any, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_serializer,
    field_validator,
    model_validator,
)
from pydantic_core import PydanticCustomError

from ..exceptions import ConfigErrorKind, ConfigurationError
from ..types import OIDC_PREFIX, SAML_PREFIX, ProviderKind


logger = logging.getLogger("fedsignin.auth")

ConfigSource = Union[str, os.PathLike, IO[str], IO[bytes], Mapping[str, str]]

OIDC_PROVIDER_KEY = "oidc.provider.id"
SAML_PROVIDER_KEY = "saml.provider.id"
CUSTOM_PARAMS_KEY = "oidc.custom.params"
SCOPES_KEY = "oidc.scopes"
DEVELOPMENT_MODE_KEY = "oidc.development.mode"
LEGACY_DEVELOPMENT_MODE_KEY = "auth.development.mode"


class AuthConfig(BaseModel):
    """Validated provider configuration.

    Immutable; produced by ``ConfigStore.load`` and cached for the
    lifetime of the store.
    """

    model_config = ConfigDict(frozen=True)

    oidc_provider_ref: str | None = None
    saml_provider_ref: str | None = None
    custom_parameters: Mapping[str, str] = Field(default_factory=dict, validate_default=True)
    scopes: tuple[str, ...] = ()
    development_mode: bool = False

    @field_validator("oidc_provider_ref", "saml_provider_ref", mode="before")
    @classmethod
    def _blank_is_absent(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = v.strip()
            return v or None
        return v

    @field_validator("custom_parameters")
    @classmethod
    def _read_only_parameters(cls, v: Mapping[str, str]) -> Mapping[str, str]:
        return MappingProxyType(dict(v))

    @field_serializer("custom_parameters")
    def _serialize_parameters(self, v: Mapping[str, str]) -> dict[str, str]:
        return dict(v)

    @field_validator("oidc_provider_ref")
    @classmethod
    def _check_oidc_prefix(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(OIDC_PREFIX):
            raise PydanticCustomError(
                ConfigErrorKind.INVALID_FORMAT.value,
                "Invalid OIDC provider ID format: '{ref}'. "
                "OIDC provider ID must start with 'oidc.' (e.g., 'oidc.auth0')",
                {"ref": v},
            )
        return v

    @field_validator("saml_provider_ref")
    @classmethod
    def _check_saml_prefix(cls, v: str | None) -> str | None:
        if v is not None and not v.startswith(SAML_PREFIX):
            raise PydanticCustomError(
                ConfigErrorKind.INVALID_FORMAT.value,
                "Invalid SAML provider ID format: '{ref}'. "
                "SAML provider ID must start with 'saml.' (e.g., 'saml.auth0')",
                {"ref": v},
            )
        return v

    @model_validator(mode="after")
    def _require_provider(self) -> AuthConfig:
        if self.oidc_provider_ref is None and self.saml_provider_ref is None:
            raise PydanticCustomError(
                ConfigErrorKind.NO_PROVIDER_CONFIGURED.value,
                "At least one provider must be configured. "
                "Add 'oidc.provider.id' and/or 'saml.provider.id' to the configuration.",
            )
        return self

    @property
    def has_oidc(self) -> bool:
        """Whether an OIDC provider is configured."""
        return self.oidc_provider_ref is not None

    @property
    def has_saml(self) -> bool:
        """Whether a SAML provider is configured."""
        return self.saml_provider_ref is not None

    def default_provider_ref(self, kind: ProviderKind | None = None) -> str | None:
        """Return the configured provider reference for ``kind``.

        Without a kind, OIDC is preferred over SAML.
        """
        if kind is ProviderKind.OIDC:
            return self.oidc_provider_ref
        if kind is ProviderKind.SAML:
            return self.saml_provider_ref
        return self.oidc_provider_ref or self.saml_provider_ref

    def allows_override(self, provider_ref: str) -> bool:
        """Whether the UI may sign in with ``provider_ref``.

        Configured references are always allowed; anything else only in
        development mode.
        """
        if provider_ref in (self.oidc_provider_ref, self.saml_provider_ref):
            return True
        return self.development_mode


# ── Properties parsing ──────────────────────────────────────────────

_ESCAPES = {"t": "\t", "n": "\n", "r": "\r", "f": "\f"}


def _logical_lines(text: str) -> list[str]:
    """Join backslash-continued physical lines and drop comments/blanks."""
    lines: list[str] = []
    pending = ""
    for raw in text.splitlines():
        line = raw.lstrip() if pending else raw
        if not pending:
            stripped = line.lstrip()
            if not stripped or stripped[0] in "#!":
                continue
            line = stripped
        trailing = len(line) - len(line.rstrip("\\"))
        if trailing % 2 == 1:
            pending += line[:-1]
            continue
        lines.append(pending + line)
        pending = ""
    if pending:
        lines.append(pending)
    return lines


def _unescape(value: str) -> str:
    out: list[str] = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch != "\\" or i + 1 >= len(value):
            out.append(ch)
            i += 1
            continue
        nxt = value[i + 1]
        if nxt == "u" and i + 6 <= len(value):
            try:
                out.append(chr(int(value[i + 2 : i + 6], 16)))
                i += 6
                continue
            except ValueError:
                pass
        out.append(_ESCAPES.get(nxt, nxt))
        i += 2
    return "".join(out)


def _split_entry(line: str) -> tuple[str, str]:
    """Split a logical line into key and value at the first separator."""
    i = 0
    while i < len(line):
        ch = line[i]
        if ch == "\\":
            i += 2
            continue
        if ch in "=:" or ch.isspace():
            break
        i += 1
    key = line[:i]
    rest = line[i:].lstrip()
    if rest[:1] in ("=", ":"):
        rest = rest[1:].lstrip()
    return _unescape(key), _unescape(rest)


def parse_properties(text: str) -> dict[str, str]:
    """Parse Java-style properties text into a dict.

    Supports ``=``, ``:`` and whitespace separators, ``#``/``!`` comments
    and backslash line continuation. Later keys override earlier ones.
    """
    return dict(_split_entry(line) for line in _logical_lines(text))


def parse_custom_parameters(params: str) -> dict[str, str]:
    """Parse ``key=value`` pairs separated by commas.

    A malformed pair (no ``=`` or an empty key) is dropped with a warning;
    the remaining pairs are kept. Values may contain ``=``.
    """
    result: dict[str, str] = {}
    for entry in params.split(","):
        entry = entry.strip()
        if not entry:
            continue
        key, sep, value = entry.partition("=")
        key = key.strip()
        if not sep or not key:
            logger.warning("Dropping malformed custom parameter: %r", entry)
            continue
        result[key] = value.strip()
    return result


def parse_scopes(scopes: str) -> tuple[str, ...]:
    """Parse a comma-separated scope list, filtering out blanks."""
    return tuple(s.strip() for s in scopes.split(",") if s.strip())


def parse_flag(value: str | None, key: str = "") -> bool:
    """Parse a case-insensitive ``true``/``false`` flag.

    Absent or unparseable values are False.
    """
    if value is None:
        return False
    normalized = value.strip().lower()
    if normalized == "true":
        return True
    if normalized and normalized != "false":
        logger.warning("Invalid boolean for %s: %r, using false", key or "flag", value)
    return False


def parse_auth_config(properties: Mapping[str, str], source: str | None = None) -> AuthConfig:
    """Validate raw properties into an ``AuthConfig``.

    Raises
    ------
    ConfigurationError
        ``INVALID_FORMAT`` for a provider reference with the wrong prefix,
        ``NO_PROVIDER_CONFIGURED`` when neither reference is set.
    """
    dev_mode_raw = properties.get(DEVELOPMENT_MODE_KEY)
    if dev_mode_raw is None:
        dev_mode_raw = properties.get(LEGACY_DEVELOPMENT_MODE_KEY)

    try:
        config = AuthConfig(
            oidc_provider_ref=properties.get(OIDC_PROVIDER_KEY),
            saml_provider_ref=properties.get(SAML_PROVIDER_KEY),
            custom_parameters=parse_custom_parameters(properties.get(CUSTOM_PARAMS_KEY, "")),
            scopes=parse_scopes(properties.get(SCOPES_KEY, "")),
            development_mode=parse_flag(dev_mode_raw, DEVELOPMENT_MODE_KEY),
        )
    except ValidationError as exc:
        raise _config_error_from_validation(exc, source) from exc

    logger.debug(
        "Loaded config - OIDC: %s, SAML: %s, Dev Mode: %s",
        config.oidc_provider_ref,
        config.saml_provider_ref,
        config.development_mode,
    )
    return config


def _config_error_from_validation(exc: ValidationError, source: str | None) -> ConfigurationError:
    known = {kind.value: kind for kind in ConfigErrorKind}
    for err in exc.errors():
        kind = known.get(err["type"])
        if kind is not None:
            return ConfigurationError(err["msg"], kind=kind, source=source)
    first = exc.errors()[0]
    return ConfigurationError(first["msg"], kind=ConfigErrorKind.INVALID_FORMAT, source=source)


def read_source(source: ConfigSource) -> tuple[dict[str, str], str]:
    """Read a configuration source into raw properties.

    Returns
    -------
    tuple[dict[str, str], str]
        The properties and a label describing the source.

    Raises
    ------
    ConfigurationError
        ``MISSING_REQUIRED`` when the source cannot be read or decoded.
    """
    if isinstance(source, Mapping):
        return {str(k): str(v) for k, v in source.items()}, "<mapping>"

    if hasattr(source, "read"):
        label = str(getattr(source, "name", "<stream>"))
        try:
            data = source.read()
            text = data.decode("utf-8") if isinstance(data, bytes) else data
        except (OSError, UnicodeDecodeError) as exc:
            msg = f"Failed to read configuration from {label}"
            raise ConfigurationError(msg, kind=ConfigErrorKind.MISSING_REQUIRED, source=label) from exc
        return parse_properties(text), label

    path = Path(source)
    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.error("Failed to load %s", path)
        msg = f"Failed to load configuration file '{path}'. Make sure the file exists and is UTF-8 text."
        raise ConfigurationError(msg, kind=ConfigErrorKind.MISSING_REQUIRED, source=str(path)) from exc
    logger.debug("Successfully loaded %s", path)
    return parse_properties(text), str(path)


class ConfigStore:
    """Loads provider configuration once and caches it.

    Parameters
    ----------
    source : ConfigSource, optional
        Default source for ``load()``. When omitted, the path from
        ``AuthSettings.config_path`` is used.
    """

    def __init__(self, source: ConfigSource | None = None) -> None:
        """Initialize the config store."""
        self._source = source
        self._config: AuthConfig | None = None
        self._lock = threading.Lock()

    @property
    def is_loaded(self) -> bool:
        """Whether a parsed configuration is cached."""
        return self._config is not None

    def load(self, source: ConfigSource | None = None) -> AuthConfig:
        """Return the cached configuration, parsing the source on first use.

        Once a parse succeeds its result is returned for every later call,
        whatever ``source`` is passed, until ``reload()``. Failed parses are
        not cached.

        Raises
        ------
        ConfigurationError
            If the source is unreadable or the configuration is invalid.
        """
        config = self._config
        if config is not None:
            return config

        with self._lock:
            if self._config is None:
                properties, label = read_source(self._resolve_source(source))
                self._config = parse_auth_config(properties, source=label)
            return self._config

    def reload(self) -> None:
        """Drop the cached configuration so the next ``load`` re-reads it."""
        with self._lock:
            self._config = None
        logger.debug("Configuration cache cleared")

    def _resolve_source(self, source: ConfigSource | None) -> ConfigSource:
        if source is not None:
            return source
        if self._source is not None:
            return self._source
        from ..config import get_settings

        return get_settings().auth.config_path


_config_store_instance: ConfigStore | None = None
_config_store_lock = threading.Lock()


def get_config_store(source: ConfigSource | None = None) -> ConfigStore:
    """Return the process-wide default config store.

    ``source`` only applies when the store is first created. Call
    ``reset_config_store()`` to discard it (e.g. in tests).
    """
    global _config_store_instance  # noqa: PLW0603

    with _config_store_lock:
        if _config_store_instance is None:
            _config_store_instance = ConfigStore(source)
        return _config_store_instance


def reset_config_store() -> None:
    """Discard the process-wide default config store."""
    global _config_store_instance  # noqa: PLW0603

    with _config_store_lock:
        _config_store_instance = None
