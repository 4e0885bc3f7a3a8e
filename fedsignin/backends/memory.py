"""In-process identity backend for development and tests.

Handshake and token-exchange results are scripted up front (or supplied
later for held redirects), the session lives in memory, and every flow
entry point is counted so callers can assert which backend operations a
sign-in attempt used.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import itertools
import logging

from collections import Counter, deque
from collections.abc import Mapping
from typing import Any, Union

from ..exceptions import BackendError, NoActiveSessionError
from ..types import BackendAuthResult, HandshakeMode, ProviderRequest
from .listeners import SessionListenerRegistry


logger = logging.getLogger("fedsignin.backends")

ScriptedOutcome = Union[BackendAuthResult, Mapping[str, Any], BaseException, None]

_UID_KEYS = ("uid", "localId", "sub", "id")

#: Counter keys for the flow entry points.
FLOW_CALLS = ("pending_result", "start_handshake", "exchange_token")


def _uid(user: Mapping[str, Any]) -> str | None:
    for key in _UID_KEYS:
        if user.get(key):
            return str(user[key])
    return None


class InMemoryIdentityBackend:
    """Scriptable in-memory ``IdentityBackend``.

    Parameters
    ----------
    default_user : Mapping, optional
        User record returned when no result has been scripted. Without it
        an unscripted handshake fails as an unconfigured provider.
    known_providers : iterable of str, optional
        When given, handshakes for any other provider reference are
        rejected with ``CONFIGURATION_NOT_FOUND``.
    hold_redirects : bool
        When True, ``start_handshake`` waits until ``complete_redirect``
        or ``fail_redirect`` is called, like a browser redirect would.
    """

    def __init__(
        self,
        default_user: Mapping[str, Any] | None = None,
        known_providers: Any = None,
        hold_redirects: bool = False,
    ) -> None:
        """Initialize the in-memory backend."""
        self.default_user = dict(default_user) if default_user else None
        self.known_providers = set(known_providers) if known_providers is not None else None
        self.hold_redirects = hold_redirects

        self.calls: Counter[str] = Counter()
        self.requests: list[tuple[ProviderRequest, HandshakeMode]] = []
        self.exchanges: list[tuple[str, str, str | None, HandshakeMode]] = []

        self._handshake_results: deque[ScriptedOutcome] = deque()
        self._exchange_results: deque[ScriptedOutcome] = deque()
        self._pending: asyncio.Future[BackendAuthResult] | None = None
        self._pending_context: tuple[ProviderRequest, HandshakeMode] | None = None
        self._user: dict[str, Any] | None = None
        self._id_token: str | None = None
        self._token_serial = itertools.count(1)
        self._listeners = SessionListenerRegistry()

    # ── Scripting ────────────────────────────────────────────────────

    def queue_handshake(self, outcome: ScriptedOutcome) -> None:
        """Script the result of the next handshake.

        ``outcome`` may be a ``BackendAuthResult``, a bare user record,
        an exception to raise, or None for a success without a user.
        """
        self._handshake_results.append(outcome)

    def queue_exchange(self, outcome: ScriptedOutcome) -> None:
        """Script the result of the next token exchange."""
        self._exchange_results.append(outcome)

    def complete_redirect(self, outcome: ScriptedOutcome = ...) -> None:  # type: ignore[assignment]
        """Deliver the browser redirect for the held handshake.

        Without an argument the next scripted (or default) result is used.
        """
        future = self._pending
        if future is None or future.done() or self._pending_context is None:
            msg = "No redirect is being held"
            raise RuntimeError(msg)
        request, mode = self._pending_context
        if outcome is ...:
            outcome = self._next_handshake(request)
        self._resolve(future, outcome, request.provider_ref, mode)

    def fail_redirect(self, error: BaseException) -> None:
        """Fail the held handshake with ``error``."""
        self.complete_redirect(error)

    def retain_pending(self, outcome: ScriptedOutcome, provider_ref: str = "oidc.pending") -> None:
        """Seed a finished handshake nobody has consumed yet.

        Simulates a redirect that completed while the host process was not
        in the foreground. Must be called from a running event loop.
        """
        future: asyncio.Future[BackendAuthResult] = asyncio.get_running_loop().create_future()
        self._pending = future
        self._pending_context = (ProviderRequest(provider_ref), HandshakeMode.SIGN_IN)
        self._resolve(future, outcome, provider_ref, HandshakeMode.SIGN_IN)

    def sign_in_directly(self, user: Mapping[str, Any]) -> None:
        """Establish a session without a handshake (test setup helper)."""
        self._commit_user(dict(user))

    def update_user(self, **fields: Any) -> None:
        """Change the signed-in user's record and notify listeners."""
        if self._user is None:
            raise NoActiveSessionError("No user is currently signed in")
        self._commit_user({**self._user, **fields})

    @property
    def flow_call_count(self) -> int:
        """Total calls to the flow entry points."""
        return sum(self.calls[name] for name in FLOW_CALLS)

    # ── IdentityBackend ──────────────────────────────────────────────

    def pending_result(self) -> Any:
        """Return the unconsumed handshake, if any."""
        self.calls["pending_result"] += 1
        future = self._pending
        if future is None:
            return None
        return self._consume(future)

    async def start_handshake(
        self,
        request: ProviderRequest,
        mode: HandshakeMode = HandshakeMode.SIGN_IN,
    ) -> BackendAuthResult:
        """Run a scripted handshake, optionally held until redirected."""
        self.calls["start_handshake"] += 1
        self.requests.append((request, mode))
        logger.debug("Handshake %s for %s", mode.value, request.provider_ref)

        future: asyncio.Future[BackendAuthResult] = asyncio.get_running_loop().create_future()
        self._pending = future
        self._pending_context = (request, mode)
        if not self.hold_redirects:
            self._resolve(future, self._next_handshake(request), request.provider_ref, mode)
        return await self._consume(future)

    async def exchange_token(
        self,
        provider_ref: str,
        id_token: str,
        access_token: str | None = None,
        mode: HandshakeMode = HandshakeMode.SIGN_IN,
    ) -> BackendAuthResult:
        """Exchange a provider token using the scripted result."""
        self.calls["exchange_token"] += 1
        self.exchanges.append((provider_ref, id_token, access_token, mode))
        if self._exchange_results:
            outcome = self._exchange_results.popleft()
        elif self.default_user is not None:
            outcome = self.default_user
        else:
            outcome = BackendError(
                f"No account for provider {provider_ref}", code="INVALID_IDP_RESPONSE"
            )
        return self._apply(outcome, provider_ref, mode)

    def sign_out(self) -> None:
        """Clear the session and notify listeners."""
        if self._user is None:
            return
        self._user = None
        self._id_token = None
        self._listeners.notify(None)

    def current_user(self) -> Mapping[str, Any] | None:
        """Return a copy of the signed-in user's record."""
        return dict(self._user) if self._user is not None else None

    def add_session_listener(self, listener: Any) -> None:
        """Register a session listener."""
        self._listeners.add(listener)

    def remove_session_listener(self, listener: Any) -> None:
        """Unregister a session listener."""
        self._listeners.remove(listener)

    async def fetch_id_token(self, force_refresh: bool = False) -> str:
        """Return the session token, issuing a new one when forced."""
        if self._user is None:
            raise NoActiveSessionError("No user is currently signed in")
        if force_refresh or self._id_token is None:
            self._id_token = self._issue_token(self._user)
        return self._id_token

    async def fetch_claims(self) -> Mapping[str, Any]:
        """Return claims describing the signed-in user."""
        if self._user is None:
            raise NoActiveSessionError("No user is currently signed in")
        user = self._user
        claims: dict[str, Any] = {
            "sub": _uid(user),
            "sign_in_provider": user.get("providerId"),
        }
        if user.get("email"):
            claims["email"] = user["email"]
        claims.update(user.get("customClaims", {}))
        return claims

    # ── Internals ────────────────────────────────────────────────────

    async def _consume(self, future: asyncio.Future[BackendAuthResult]) -> BackendAuthResult:
        # Shielded: a cancelled awaiter leaves the result for the next one.
        try:
            return await asyncio.shield(future)
        finally:
            if future.done() and self._pending is future:
                self._pending = None
                self._pending_context = None

    def _next_handshake(self, request: ProviderRequest) -> ScriptedOutcome:
        if self.known_providers is not None and request.provider_ref not in self.known_providers:
            return BackendError(
                f"The identity provider configuration is not found for provider {request.provider_ref}",
                code="CONFIGURATION_NOT_FOUND",
            )
        if self._handshake_results:
            return self._handshake_results.popleft()
        if self.default_user is not None:
            return self.default_user
        return BackendError(
            f"No handshake result for provider {request.provider_ref}",
            code="CONFIGURATION_NOT_FOUND",
        )

    def _resolve(
        self,
        future: asyncio.Future[BackendAuthResult],
        outcome: ScriptedOutcome,
        provider_ref: str,
        mode: HandshakeMode,
    ) -> None:
        try:
            result = self._apply(outcome, provider_ref, mode)
        except Exception as exc:
            future.set_exception(exc)
        else:
            future.set_result(result)

    def _apply(
        self,
        outcome: ScriptedOutcome,
        provider_ref: str,
        mode: HandshakeMode,
    ) -> BackendAuthResult:
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, BackendAuthResult):
            result = outcome
        else:
            result = BackendAuthResult(user=outcome, provider_ref=provider_ref)
        if result.user is None:
            return result

        user = {"providerId": result.provider_ref or provider_ref, **result.user}
        if mode is not HandshakeMode.SIGN_IN:
            current = self._user
            if current is None:
                raise NoActiveSessionError("No user is currently signed in", provider=provider_ref)
            if mode is HandshakeMode.REAUTHENTICATE and _uid(user) != _uid(current):
                raise BackendError(
                    "The supplied credentials do not correspond to the previously signed in user",
                    code="USER_MISMATCH",
                    provider=provider_ref,
                )
            if mode is HandshakeMode.LINK:
                linked = [*current.get("linkedProviders", []), provider_ref]
                user = {**current, "linkedProviders": linked}

        self._commit_user(user)
        return BackendAuthResult(
            user=dict(user),
            provider_ref=result.provider_ref or provider_ref,
            is_new_user=result.is_new_user,
            raw=result.raw,
        )

    def _commit_user(self, user: dict[str, Any]) -> None:
        self._user = user
        self._id_token = self._issue_token(user)
        self._listeners.notify(user)

    def _issue_token(self, user: Mapping[str, Any]) -> str:
        return f"memory-token-{_uid(user)}-{next(self._token_serial)}"
