"""Tests for provider request construction."""

from __future__ import annotations

import pytest

from fedsignin.auth.config_store import AuthConfig
from fedsignin.auth.request import build_provider_request
from fedsignin.types import ProviderKind, ProviderRequest, provider_kind


@pytest.fixture()
def config() -> AuthConfig:
    """Configuration with parameters and scopes."""
    return AuthConfig(
        oidc_provider_ref="oidc.okta",
        custom_parameters={"tenant": "abc", "prompt": "login"},
        scopes=("openid", "email"),
    )


class TestBuildProviderRequest:
    """Tests for build_provider_request."""

    def test_copies_parameters_and_scopes(self, config: AuthConfig) -> None:
        """Custom parameters and scopes come from the configuration verbatim."""
        request = build_provider_request("oidc.okta", config)
        assert request == ProviderRequest(
            provider_ref="oidc.okta",
            custom_parameters={"tenant": "abc", "prompt": "login"},
            scopes=("openid", "email"),
        )

    def test_request_does_not_alias_config(self, config: AuthConfig) -> None:
        """Mutating the request's parameters leaves the configuration alone."""
        request = build_provider_request("oidc.okta", config)
        request.custom_parameters["tenant"] = "changed"  # type: ignore[index]
        assert config.custom_parameters["tenant"] == "abc"

    def test_saml_reference(self, config: AuthConfig) -> None:
        """SAML references use the same builder."""
        request = build_provider_request("saml.adfs", config)
        assert request.provider_ref == "saml.adfs"
        assert request.kind is ProviderKind.SAML

    def test_unknown_prefix_passes_through(self, config: AuthConfig) -> None:
        """The builder does not validate prefixes."""
        request = build_provider_request("microsoft.com", config)
        assert request.provider_ref == "microsoft.com"
        assert request.kind is ProviderKind.OAUTH

    @pytest.mark.parametrize("bad", [None, 42, b"oidc.okta"])
    def test_non_str_reference(self, config: AuthConfig, bad: object) -> None:
        """Only a non-str reference raises."""
        with pytest.raises(TypeError):
            build_provider_request(bad, config)  # type: ignore[arg-type]

    def test_empty_configuration_values(self) -> None:
        """No parameters or scopes configured yields an empty request body."""
        request = build_provider_request("saml.adfs", AuthConfig(saml_provider_ref="saml.adfs"))
        assert dict(request.custom_parameters) == {}
        assert request.scopes == ()


class TestProviderKind:
    """Tests for prefix classification."""

    @pytest.mark.parametrize(
        ("ref", "kind"),
        [
            ("oidc.okta", ProviderKind.OIDC),
            ("saml.adfs", ProviderKind.SAML),
            ("google.com", ProviderKind.GOOGLE),
            ("github.com", ProviderKind.OAUTH),
            ("", ProviderKind.OAUTH),
        ],
    )
    def test_classification(self, ref: str, kind: ProviderKind) -> None:
        """References are classified by prefix."""
        assert provider_kind(ref) is kind
