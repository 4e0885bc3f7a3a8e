"""Sign-in flow orchestrator.

Provides SignInFlowController, the state machine that drives redirect
handshakes, token exchanges and native credential sign-ins against an
``IdentityBackend`` and normalizes every result into a ``SignInOutcome``.

A redirect handshake can outlive the caller: the browser may hold the user
for minutes, and the calling task may be cancelled or the host may lose
foreground control. Before starting a new handshake the controller asks the
backend for a pending result and checks its own in-flight handshake; if
either exists it resumes that one instead of building a second request.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import logging
import secrets

from typing import TYPE_CHECKING, Any

from ..exceptions import AuthFlowCancelled, ConfigurationError
from ..log import redact_sensitive_data
from ..types import (
    GOOGLE_PROVIDER_REF,
    FailureKind,
    FlowState,
    HandshakeMode,
    Principal,
    SignInFailure,
    SignInOutcome,
    SignInSuccess,
)
from .failures import failure_from_error
from .request import build_provider_request
from .session import SessionFacade


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from ..types import BackendAuthResult
    from .backend import IdentityBackend, NativeCredentialProvider
    from .config_store import ConfigStore


logger = logging.getLogger("fedsignin.auth")

#: Client ID value shipped in templates; treated as "not configured".
PLACEHOLDER_CLIENT_ID = "YOUR_WEB_CLIENT_ID_HERE"


def _require_str(value: Any, name: str) -> None:
    if not isinstance(value, str):
        msg = f"{name} must be a str, got {type(value).__name__}"
        raise TypeError(msg)


class SignInFlowController:
    """Drives sign-in attempts through the identity backend.

    One instance per process. Every public coroutine returns a
    ``SignInSuccess`` or ``SignInFailure``; only argument type misuse
    raises (``TypeError``).

    Parameters
    ----------
    backend : IdentityBackend
        The backend that executes handshakes and owns the session.
    config_store : ConfigStore
        Source of the provider configuration.
    session : SessionFacade, optional
        Session facade used for ``sign_out``; created if omitted.
    credential_provider : NativeCredentialProvider, optional
        Platform account picker for ``sign_in_with_native_credential``.
    on_transition : callable, optional
        Called as ``on_transition(old_state, new_state)`` on every state
        change. Exceptions it raises are logged and ignored.
    """

    def __init__(
        self,
        backend: IdentityBackend,
        config_store: ConfigStore,
        session: SessionFacade | None = None,
        credential_provider: NativeCredentialProvider | None = None,
        on_transition: Callable[[FlowState, FlowState], None] | None = None,
    ) -> None:
        """Initialize the flow controller."""
        self.backend = backend
        self.config_store = config_store
        self.session = session or SessionFacade(backend)
        self.credential_provider = credential_provider
        self.on_transition = on_transition

        self._state = FlowState.IDLE
        self._inflight: asyncio.Future[BackendAuthResult] | None = None
        self._active = 0
        self._abandoned_flow: str | None = None

    @property
    def flow_state(self) -> FlowState:
        """Current state of the controller."""
        return self._state

    @property
    def has_inflight_handshake(self) -> bool:
        """Whether a handshake started by this controller is still running."""
        return self._inflight is not None and not self._inflight.done()

    # ── Redirect flows ───────────────────────────────────────────────

    async def start_sign_in(self, provider_ref: str | None = None) -> SignInOutcome:
        """Sign in through the provider's external redirect handshake.

        Parameters
        ----------
        provider_ref : str, optional
            Provider reference (``oidc.*``, ``saml.*`` or any reference the
            backend knows). Defaults to the configured OIDC provider, then
            the configured SAML provider.

        Returns
        -------
        SignInOutcome
            Success with the principal, or a classified failure.
        """
        return await self._run_redirect_flow(provider_ref, HandshakeMode.SIGN_IN)

    async def reauthenticate(self, provider_ref: str | None = None) -> SignInOutcome:
        """Re-verify the signed-in user before a sensitive operation.

        Fails with ``NO_ACTIVE_SESSION`` without contacting the backend's
        handshake entry points when nobody is signed in.
        """
        if provider_ref is not None:
            _require_str(provider_ref, "provider_ref")
        if not self._has_session():
            return self._no_session(provider_ref, "Reauthentication")
        return await self._run_redirect_flow(provider_ref, HandshakeMode.REAUTHENTICATE)

    async def link_provider(self, provider_ref: str | None = None) -> SignInOutcome:
        """Link another provider to the signed-in user's account.

        Same preconditions as ``reauthenticate``.
        """
        if provider_ref is not None:
            _require_str(provider_ref, "provider_ref")
        if not self._has_session():
            return self._no_session(provider_ref, "Account linking")
        return await self._run_redirect_flow(provider_ref, HandshakeMode.LINK)

    async def _run_redirect_flow(
        self, provider_ref: str | None, mode: HandshakeMode
    ) -> SignInOutcome:
        if provider_ref is not None:
            _require_str(provider_ref, "provider_ref")
        flow_id = secrets.token_urlsafe(8)

        # The pending check and the dispatch below must not be separated by
        # an await, or two flows could both see "nothing pending".
        pending = self._pending_result()
        if pending is not None:
            logger.info("Flow %s: found pending auth result, resuming", flow_id)
            self._transition(FlowState.RESUMING)
            return await self._settle(pending, provider_ref, flow_id)

        try:
            resolved = self._resolve_provider_ref(provider_ref)
            request = build_provider_request(resolved, self.config_store.load())
        except ConfigurationError as exc:
            logger.error("Flow %s: configuration unusable: %s", flow_id, exc)
            return failure_from_error(exc, provider_ref)
        except ValueError as exc:
            return SignInFailure(
                kind=FailureKind.PROVIDER_NOT_CONFIGURED,
                message=str(exc),
                cause_provider_ref=provider_ref,
                error=exc,
            )

        logger.info("Flow %s: starting %s %s with %s", flow_id, request.kind.value, mode.value, resolved)
        logger.debug(
            "Flow %s: custom parameters %s, scopes %s",
            flow_id,
            redact_sensitive_data(dict(request.custom_parameters)),
            list(request.scopes),
        )
        self._transition(FlowState.AWAITING_EXTERNAL_REDIRECT)
        handshake = asyncio.ensure_future(self.backend.start_handshake(request, mode))
        self._inflight = handshake
        handshake.add_done_callback(self._clear_inflight)
        # Shielded so a cancelled caller leaves the handshake running for a
        # later call to resume.
        return await self._settle(asyncio.shield(handshake), resolved, flow_id)

    def _pending_result(self) -> Awaitable[BackendAuthResult] | None:
        pending = self.backend.pending_result()
        if pending is not None:
            return pending
        inflight = self._inflight
        if inflight is not None and not inflight.done():
            return asyncio.shield(inflight)
        return None

    def _clear_inflight(self, future: asyncio.Future[BackendAuthResult]) -> None:
        if self._inflight is future:
            self._inflight = None

    def _resolve_provider_ref(self, provider_ref: str | None) -> str:
        config = self.config_store.load()
        if provider_ref is None:
            resolved = config.default_provider_ref()
            if resolved is None:
                msg = "No provider configured"
                raise ValueError(msg)
            return resolved
        resolved = provider_ref.strip()
        if not resolved:
            msg = "Provider ID cannot be empty"
            raise ValueError(msg)
        if not config.allows_override(resolved):
            logger.warning("Provider %s is not in the configuration; dispatching anyway", resolved)
        return resolved

    async def _settle(
        self,
        awaitable: Awaitable[BackendAuthResult],
        provider_ref: str | None,
        flow_id: str,
    ) -> SignInOutcome:
        self._abandoned_flow = None
        self._active += 1
        try:
            outcome = await self._await_outcome(awaitable, provider_ref)
        except asyncio.CancelledError:
            self._active -= 1
            if self._active == 0:
                self._settle_when_done(provider_ref, flow_id)
            raise
        self._active -= 1
        self._finish(outcome, flow_id)
        return outcome

    def _finish(self, outcome: SignInOutcome, flow_id: str) -> None:
        if outcome.ok:
            logger.info("Flow %s completed", flow_id)
            self._transition(FlowState.COMPLETED)
        else:
            logger.warning("Flow %s failed: %s", flow_id, outcome.message)
            self._transition(FlowState.FAILED)
        if self._active == 0:
            self._transition(FlowState.IDLE)

    def _settle_when_done(self, provider_ref: str | None, flow_id: str) -> None:
        """Settle the state of a handshake whose last caller was cancelled.

        A caller that resumes the handshake first takes over settling it.
        """
        inflight = self._inflight
        if inflight is None or inflight.done():
            self._transition(FlowState.IDLE)
            return

        logger.debug("Flow %s: caller cancelled, handshake left running", flow_id)
        self._abandoned_flow = flow_id

        def settle(future: asyncio.Future[BackendAuthResult]) -> None:
            if self._abandoned_flow != flow_id or self._active:
                return
            self._abandoned_flow = None
            if future.cancelled():
                outcome = failure_from_error(AuthFlowCancelled("Handshake cancelled"), provider_ref)
            elif future.exception() is not None:
                outcome = failure_from_error(future.exception(), provider_ref)
            else:
                outcome = self._normalize(future.result(), provider_ref)
            self._finish(outcome, flow_id)

        inflight.add_done_callback(settle)

    # ── Token flows ──────────────────────────────────────────────────

    async def sign_in_with_token(
        self,
        provider_ref: str,
        id_token: str,
        access_token: str | None = None,
    ) -> SignInOutcome:
        """Exchange an already-obtained provider token for a session.

        Bypasses the redirect handshake and the pending-result check.

        Parameters
        ----------
        provider_ref : str
            Provider the token was issued by.
        id_token : str
            The provider's ID token.
        access_token : str, optional
            The provider's access token, when it has one.
        """
        _require_str(provider_ref, "provider_ref")
        _require_str(id_token, "id_token")
        if access_token is not None:
            _require_str(access_token, "access_token")

        logger.debug("Token sign-in with %s (access token: %s)", provider_ref, access_token is not None)
        return await self._await_outcome(
            self.backend.exchange_token(provider_ref, id_token, access_token, HandshakeMode.SIGN_IN),
            provider_ref,
        )

    async def sign_in_with_native_credential(
        self,
        platform_context: Any,
        client_id: str | None = None,
    ) -> SignInOutcome:
        """Sign in with a credential from the platform account picker.

        Parameters
        ----------
        platform_context : Any
            Host handle forwarded to the credential provider.
        client_id : str, optional
            OAuth client ID; defaults to ``AuthSettings.web_client_id``.
        """
        if client_id is None:
            from ..config import get_settings

            client_id = get_settings().auth.web_client_id
        _require_str(client_id, "client_id")

        if not client_id.strip() or client_id == PLACEHOLDER_CLIENT_ID:
            return SignInFailure(
                kind=FailureKind.PROVIDER_NOT_CONFIGURED,
                message="Web client ID is not configured",
                cause_provider_ref=GOOGLE_PROVIDER_REF,
            )
        if self.credential_provider is None:
            return SignInFailure(
                kind=FailureKind.PROVIDER_NOT_CONFIGURED,
                message="No native credential provider is configured",
                cause_provider_ref=GOOGLE_PROVIDER_REF,
            )

        try:
            credential = await self.credential_provider.get_credential(platform_context, client_id)
        except Exception as exc:
            logger.warning("Native credential retrieval failed: %s", exc)
            return failure_from_error(exc, GOOGLE_PROVIDER_REF)

        return await self.sign_in_with_token(
            credential.provider_ref,
            credential.id_token,
            credential.access_token,
        )

    # ── Session ──────────────────────────────────────────────────────

    def sign_out(self) -> None:
        """End the current session."""
        self.session.sign_out()

    # ── Helpers ──────────────────────────────────────────────────────

    async def _await_outcome(
        self,
        awaitable: Awaitable[BackendAuthResult],
        provider_ref: str | None,
    ) -> SignInOutcome:
        try:
            result = await awaitable
        except Exception as exc:
            logger.debug("Backend error type: %s", exc.__class__.__name__)
            return failure_from_error(exc, provider_ref)
        return self._normalize(result, provider_ref)

    def _normalize(self, result: BackendAuthResult | None, provider_ref: str | None) -> SignInOutcome:
        source_ref = (result.provider_ref if result else None) or provider_ref
        principal = Principal.from_user_info(
            result.user if result else None,
            self.backend,
            provider_ref=source_ref,
        )
        if principal is None:
            logger.error("Sign-in failed: backend returned no user")
            return SignInFailure(
                kind=FailureKind.NULL_PRINCIPAL,
                message="Sign-in failed: User is null",
                cause_provider_ref=source_ref,
            )
        logger.debug("Signed in user %s via %s", principal.id, principal.provider_ref)
        return SignInSuccess(principal=principal, is_new_user=result.is_new_user if result else False)

    def _has_session(self) -> bool:
        return self.backend.current_user() is not None

    @staticmethod
    def _no_session(provider_ref: str | None, operation: str) -> SignInFailure:
        return SignInFailure(
            kind=FailureKind.NO_ACTIVE_SESSION,
            message=f"{operation} failed: no user is currently signed in",
            cause_provider_ref=provider_ref,
        )

    def _transition(self, new_state: FlowState) -> None:
        old_state = self._state
        if old_state is new_state:
            return
        self._state = new_state
        logger.debug("Flow state %s -> %s", old_state.value, new_state.value)
        if self.on_transition is not None:
            try:
                self.on_transition(old_state, new_state)
            except Exception:
                logger.exception("Flow transition callback failed")
