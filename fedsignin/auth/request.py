"""Provider request construction.

Turns a provider reference plus the loaded configuration into the request
descriptor a backend needs to start a handshake. OIDC and SAML share the
same descriptor; the backend switches on the reference prefix.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..types import ProviderRequest


if TYPE_CHECKING:
    from .config_store import AuthConfig


def build_provider_request(provider_ref: str, config: AuthConfig) -> ProviderRequest:
    """Build the request for one sign-in attempt.

    The prefix of ``provider_ref`` is not checked: operators may use
    references outside the ``oidc.``/``saml.`` family and the backend
    rejects unknown ones when the request is dispatched.

    Parameters
    ----------
    provider_ref : str
        Provider reference to sign in with.
    config : AuthConfig
        Loaded configuration supplying custom parameters and scopes.

    Returns
    -------
    ProviderRequest
        A new request owning copies of the parameters and scopes.

    Raises
    ------
    TypeError
        If ``provider_ref`` is not a string.
    """
    if not isinstance(provider_ref, str):
        msg = f"provider_ref must be a str, got {type(provider_ref).__name__}"
        raise TypeError(msg)
    return ProviderRequest(
        provider_ref=provider_ref,
        custom_parameters=dict(config.custom_parameters),
        scopes=tuple(config.scopes),
    )
