"""Tests for provider configuration loading and validation."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

import io
import logging

from pathlib import Path

import pytest

from fedsignin.auth.config_store import (
    AuthConfig,
    ConfigStore,
    get_config_store,
    parse_auth_config,
    parse_custom_parameters,
    parse_flag,
    parse_properties,
    parse_scopes,
    reset_config_store,
)
from fedsignin.config import clear_settings
from fedsignin.exceptions import ConfigErrorKind, ConfigurationError
from fedsignin.types import ProviderKind


# ── Properties syntax ───────────────────────────────────────────────


class TestParseProperties:
    """Tests for the properties text parser."""

    def test_separators(self) -> None:
        """Equals, colon and whitespace separators are all accepted."""
        props = parse_properties("a=1\nb:2\nc 3\nd = 4\ne : 5\n")
        assert props == {"a": "1", "b": "2", "c": "3", "d": "4", "e": "5"}

    def test_comments_and_blank_lines(self) -> None:
        """Comment and blank lines are ignored."""
        text = "# comment\n! also a comment\n\n   \nkey=value\n  # indented comment\n"
        assert parse_properties(text) == {"key": "value"}

    def test_line_continuation(self) -> None:
        """A trailing backslash joins the next line, dropping its indentation."""
        text = "oidc.scopes=openid,\\\n    email,\\\n    profile\n"
        assert parse_properties(text) == {"oidc.scopes": "openid,email,profile"}

    def test_escaped_backslash_is_not_continuation(self) -> None:
        """An even number of trailing backslashes does not continue the line."""
        props = parse_properties("path=C:\\\\\nnext=1\n")
        assert props == {"path": "C:\\", "next": "1"}

    def test_value_keeps_separators(self) -> None:
        """Only the first separator splits key and value."""
        props = parse_properties("oidc.custom.params=tenant=abc,domain=x.com\n")
        assert props == {"oidc.custom.params": "tenant=abc,domain=x.com"}

    def test_later_key_wins(self) -> None:
        """Repeated keys keep the last value."""
        assert parse_properties("a=1\na=2\n") == {"a": "2"}

    def test_empty_value(self) -> None:
        """A key without a value maps to the empty string."""
        assert parse_properties("a=\nb\n") == {"a": "", "b": ""}

    def test_unicode_escape(self) -> None:
        """\\uXXXX escapes are decoded."""
        assert parse_properties("name=caf\\u00e9\n") == {"name": "café"}


class TestParseHelpers:
    """Tests for value-level parsing helpers."""

    def test_custom_parameters(self) -> None:
        """Comma-separated pairs become a dict."""
        assert parse_custom_parameters("tenant=abc,domain=x.com") == {
            "tenant": "abc",
            "domain": "x.com",
        }

    def test_custom_parameters_drop_malformed_pair(self, caplog: pytest.LogCaptureFixture) -> None:
        """A malformed pair is dropped without failing the whole parse."""
        with caplog.at_level(logging.WARNING, logger="fedsignin.auth"):
            result = parse_custom_parameters("tenant=abc,badpair,=novalue,domain=x.com")
        assert result == {"tenant": "abc", "domain": "x.com"}
        assert "badpair" in caplog.text

    def test_custom_parameters_value_may_contain_equals(self) -> None:
        """Only the first '=' separates key and value."""
        assert parse_custom_parameters("state=a=b") == {"state": "a=b"}

    def test_custom_parameters_trims_whitespace(self) -> None:
        """Keys and values are trimmed."""
        assert parse_custom_parameters(" prompt = login , ") == {"prompt": "login"}

    def test_custom_parameters_empty(self) -> None:
        """An empty string yields no parameters."""
        assert parse_custom_parameters("") == {}

    def test_scopes(self) -> None:
        """Scopes are trimmed and blanks filtered out, order kept."""
        assert parse_scopes(" openid, ,email,,profile ") == ("openid", "email", "profile")

    @pytest.mark.parametrize(
        ("raw", "expected"),
        [("true", True), ("TRUE", True), (" True ", True), ("false", False), ("yes", False), (None, False)],
    )
    def test_flag(self, raw: str | None, expected: bool) -> None:
        """Flags accept true/false case-insensitively and default to False."""
        assert parse_flag(raw, "oidc.development.mode") is expected


# ── Validation ──────────────────────────────────────────────────────


class TestParseAuthConfig:
    """Tests for validation of raw properties."""

    def test_oidc_only_round_trips(self) -> None:
        """A single OIDC reference is kept verbatim."""
        config = parse_auth_config({"oidc.provider.id": "oidc.auth0"})
        assert config.oidc_provider_ref == "oidc.auth0"
        assert config.saml_provider_ref is None

    def test_saml_only_round_trips(self) -> None:
        """A single SAML reference is kept verbatim."""
        config = parse_auth_config({"saml.provider.id": "saml.adfs"})
        assert config.saml_provider_ref == "saml.adfs"
        assert config.oidc_provider_ref is None

    def test_missing_oidc_prefix(self) -> None:
        """An OIDC reference without the prefix is an invalid format."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_auth_config({"oidc.provider.id": "azure"})
        assert exc_info.value.kind is ConfigErrorKind.INVALID_FORMAT
        assert "oidc." in exc_info.value.message

    def test_missing_saml_prefix(self) -> None:
        """A SAML reference without the prefix is an invalid format."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_auth_config({"saml.provider.id": "adfs"})
        assert exc_info.value.kind is ConfigErrorKind.INVALID_FORMAT

    def test_no_provider(self) -> None:
        """Neither reference present is NO_PROVIDER_CONFIGURED."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_auth_config({"oidc.scopes": "openid"})
        assert exc_info.value.kind is ConfigErrorKind.NO_PROVIDER_CONFIGURED

    def test_blank_reference_counts_as_absent(self) -> None:
        """Whitespace-only references are treated as missing."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_auth_config({"oidc.provider.id": "   ", "saml.provider.id": ""})
        assert exc_info.value.kind is ConfigErrorKind.NO_PROVIDER_CONFIGURED

    def test_reference_trimmed(self) -> None:
        """References are trimmed before validation."""
        config = parse_auth_config({"oidc.provider.id": "  oidc.okta  "})
        assert config.oidc_provider_ref == "oidc.okta"

    def test_development_mode(self) -> None:
        """The development flag is parsed."""
        config = parse_auth_config({"oidc.provider.id": "oidc.a", "oidc.development.mode": "TRUE"})
        assert config.development_mode is True

    def test_legacy_development_mode_key(self) -> None:
        """The legacy key applies when the primary key is absent."""
        config = parse_auth_config({"oidc.provider.id": "oidc.a", "auth.development.mode": "true"})
        assert config.development_mode is True

    def test_primary_development_mode_key_wins(self) -> None:
        """The primary key overrides the legacy key."""
        config = parse_auth_config(
            {
                "oidc.provider.id": "oidc.a",
                "oidc.development.mode": "false",
                "auth.development.mode": "true",
            }
        )
        assert config.development_mode is False

    def test_source_in_error(self) -> None:
        """The source label is attached to the error."""
        with pytest.raises(ConfigurationError) as exc_info:
            parse_auth_config({}, source="app.properties")
        assert exc_info.value.source == "app.properties"
        assert "app.properties" in str(exc_info.value)


class TestAuthConfig:
    """Tests for AuthConfig helpers."""

    def test_default_provider_prefers_oidc(self) -> None:
        """OIDC is the default when both are configured."""
        config = AuthConfig(oidc_provider_ref="oidc.okta", saml_provider_ref="saml.adfs")
        assert config.default_provider_ref() == "oidc.okta"
        assert config.default_provider_ref(ProviderKind.SAML) == "saml.adfs"

    def test_default_provider_falls_back_to_saml(self) -> None:
        """SAML is the default when OIDC is absent."""
        config = AuthConfig(saml_provider_ref="saml.adfs")
        assert config.default_provider_ref() == "saml.adfs"
        assert config.has_saml
        assert not config.has_oidc

    def test_allows_override(self) -> None:
        """Unlisted references are allowed only in development mode."""
        config = AuthConfig(oidc_provider_ref="oidc.okta")
        assert config.allows_override("oidc.okta")
        assert not config.allows_override("oidc.other")
        dev = AuthConfig(oidc_provider_ref="oidc.okta", development_mode=True)
        assert dev.allows_override("oidc.other")

    def test_frozen(self) -> None:
        """Loaded configuration is immutable."""
        config = AuthConfig(oidc_provider_ref="oidc.okta")
        with pytest.raises(Exception):  # noqa: B017, PT011
            config.oidc_provider_ref = "oidc.other"  # type: ignore[misc]

    def test_custom_parameters_read_only(self) -> None:
        """Custom parameters cannot be changed in place."""
        config = AuthConfig(oidc_provider_ref="oidc.okta", custom_parameters={"tenant": "abc"})
        with pytest.raises(TypeError):
            config.custom_parameters["tenant"] = "other"  # type: ignore[index]
        with pytest.raises(TypeError):
            AuthConfig(oidc_provider_ref="oidc.okta").custom_parameters["tenant"] = "x"  # type: ignore[index]
        assert config.custom_parameters == {"tenant": "abc"}
        assert config.model_dump()["custom_parameters"] == {"tenant": "abc"}


# ── ConfigStore ─────────────────────────────────────────────────────


class TestConfigStore:
    """Tests for ConfigStore loading and caching."""

    def test_load_from_path(self, properties_file: Path) -> None:
        """A properties file on disk is parsed."""
        config = ConfigStore(properties_file).load()
        assert config.oidc_provider_ref == "oidc.okta"
        assert dict(config.custom_parameters) == {"tenant": "abc123"}
        assert config.scopes == ("openid", "email")

    def test_load_from_str_path(self, properties_file: Path) -> None:
        """A string path works like a Path."""
        assert ConfigStore(str(properties_file)).load().oidc_provider_ref == "oidc.okta"

    def test_load_from_stream(self) -> None:
        """An open text stream is read."""
        stream = io.StringIO("saml.provider.id=saml.adfs\n")
        assert ConfigStore(stream).load().saml_provider_ref == "saml.adfs"

    def test_load_from_bytes_stream(self) -> None:
        """A binary stream is decoded as UTF-8."""
        stream = io.BytesIO(b"oidc.provider.id=oidc.okta\n")
        assert ConfigStore(stream).load().oidc_provider_ref == "oidc.okta"

    def test_load_from_mapping(self) -> None:
        """A mapping is used as already-parsed properties."""
        assert ConfigStore({"oidc.provider.id": "oidc.a"}).load().oidc_provider_ref == "oidc.a"

    def test_cached_config_cannot_be_mutated(self) -> None:
        """A caller cannot change the cached configuration seen by later loads."""
        store = ConfigStore({"oidc.provider.id": "oidc.okta", "oidc.custom.params": "tenant=abc"})
        with pytest.raises(TypeError):
            store.load().custom_parameters["tenant"] = "evil"  # type: ignore[index]
        assert dict(store.load().custom_parameters) == {"tenant": "abc"}

    def test_missing_file(self, tmp_path: Path) -> None:
        """A missing file is MISSING_REQUIRED."""
        store = ConfigStore(tmp_path / "nope.properties")
        with pytest.raises(ConfigurationError) as exc_info:
            store.load()
        assert exc_info.value.kind is ConfigErrorKind.MISSING_REQUIRED
        assert "nope.properties" in exc_info.value.source

    def test_undecodable_file(self, tmp_path: Path) -> None:
        """Bytes that are not UTF-8 are MISSING_REQUIRED."""
        path = tmp_path / "bad.properties"
        path.write_bytes(b"oidc.provider.id=\xff\xfe\n")
        with pytest.raises(ConfigurationError) as exc_info:
            ConfigStore(path).load()
        assert exc_info.value.kind is ConfigErrorKind.MISSING_REQUIRED

    def test_default_source_from_settings(
        self, properties_file: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        """Without a source the configured config_path is read."""
        monkeypatch.setenv("FEDSIGNIN_AUTH__CONFIG_PATH", str(properties_file))
        clear_settings()
        assert ConfigStore().load().oidc_provider_ref == "oidc.okta"

    def test_default_source_relative_to_cwd(self, tmp_path: Path) -> None:
        """The default config_path is config.properties in the working directory."""
        (tmp_path / "config.properties").write_text("saml.provider.id=saml.x\n", encoding="utf-8")
        assert ConfigStore().load().saml_provider_ref == "saml.x"

    def test_memoized(self, tmp_path: Path) -> None:
        """The first successful parse is returned until reload()."""
        path = tmp_path / "app.properties"
        path.write_text("oidc.provider.id=oidc.first\n", encoding="utf-8")
        store = ConfigStore(path)
        first = store.load()
        path.write_text("oidc.provider.id=oidc.second\n", encoding="utf-8")
        assert store.load() is first
        assert store.load({"oidc.provider.id": "oidc.other"}) is first

        store.reload()
        assert not store.is_loaded
        assert store.load().oidc_provider_ref == "oidc.second"

    def test_failed_parse_not_memoized(self, tmp_path: Path) -> None:
        """A failed load is retried on the next call."""
        path = tmp_path / "app.properties"
        store = ConfigStore(path)
        with pytest.raises(ConfigurationError):
            store.load()
        assert not store.is_loaded
        path.write_text("oidc.provider.id=oidc.late\n", encoding="utf-8")
        assert store.load().oidc_provider_ref == "oidc.late"

    def test_explicit_source_overrides_default(self) -> None:
        """A source passed to load() is used for the first parse."""
        store = ConfigStore({"oidc.provider.id": "oidc.default"})
        config = store.load({"saml.provider.id": "saml.explicit"})
        assert config.saml_provider_ref == "saml.explicit"


class TestDefaultConfigStore:
    """Tests for the process-wide config store."""

    def test_same_instance(self) -> None:
        """get_config_store returns one store per process."""
        assert get_config_store() is get_config_store()

    def test_source_only_applies_on_creation(self) -> None:
        """The source argument is ignored once the store exists."""
        store = get_config_store({"oidc.provider.id": "oidc.a"})
        again = get_config_store({"oidc.provider.id": "oidc.b"})
        assert again is store
        assert store.load().oidc_provider_ref == "oidc.a"

    def test_reset(self) -> None:
        """reset_config_store discards the store."""
        store = get_config_store()
        reset_config_store()
        assert get_config_store() is not store
