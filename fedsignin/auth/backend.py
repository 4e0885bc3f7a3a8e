"""Protocols for the external collaborators of the sign-in core.

The identity backend executes the actual protocol handshakes and owns the
session. The core only drives it through this interface, so any backend
(an in-process fake, a REST adapter, a vendor SDK wrapper) can be plugged
in without changing the flow controller.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable


if TYPE_CHECKING:
    from ..types import BackendAuthResult, HandshakeMode, NativeCredential, ProviderRequest


BackendSessionListener = Callable[[Mapping[str, Any] | None], None]


@runtime_checkable
class IdentityBackend(Protocol):
    """Identity/session service the core delegates protocol execution to."""

    def pending_result(self) -> Awaitable[BackendAuthResult] | None:
        """Return the result of an interrupted handshake, if one is retained.

        Returns
        -------
        Awaitable or None
            An awaitable resolving to the pending handshake's result, or
            None when no handshake is outstanding.
        """
        ...

    async def start_handshake(
        self,
        request: ProviderRequest,
        mode: HandshakeMode = ...,
    ) -> BackendAuthResult:
        """Run the external redirect handshake for an OIDC/SAML provider.

        The provider-reference prefix is the only behavioral switch
        between OIDC and SAML.
        """
        ...

    async def exchange_token(
        self,
        provider_ref: str,
        id_token: str,
        access_token: str | None = None,
        mode: HandshakeMode = ...,
    ) -> BackendAuthResult:
        """Exchange an already-obtained provider token for a session."""
        ...

    def sign_out(self) -> None:
        """End the current session and notify session listeners."""
        ...

    def current_user(self) -> Mapping[str, Any] | None:
        """Return the signed-in user's record, or None."""
        ...

    def add_session_listener(self, listener: BackendSessionListener) -> None:
        """Register a callback invoked after every session transition."""
        ...

    def remove_session_listener(self, listener: BackendSessionListener) -> None:
        """Unregister a previously added callback."""
        ...

    async def fetch_id_token(self, force_refresh: bool = False) -> str:
        """Return the session's ID token, refreshing it when asked or expired."""
        ...

    async def fetch_claims(self) -> Mapping[str, Any]:
        """Return the claims carried by the session's ID token."""
        ...


@runtime_checkable
class NativeCredentialProvider(Protocol):
    """Platform-native credential retrieval (e.g. a system account picker)."""

    async def get_credential(self, platform_context: Any, client_id: str) -> NativeCredential:
        """Let the user pick an account and return its credential.

        Parameters
        ----------
        platform_context : Any
            Host-specific handle the picker needs (window, activity, ...).
        client_id : str
            OAuth client ID the token is issued to.

        Raises
        ------
        AuthFlowCancelled
            If the user dismissed the picker.
        """
        ...
