"""Identity Toolkit REST backend.

Implements ``IdentityBackend`` against the Identity Toolkit v1 REST API:

- ``accounts:createAuthUri`` builds the provider's authorization URL for
  an OIDC or SAML provider reference;
- the URL is opened in the system browser and the redirect is captured on
  a loopback ``CallbackServer``;
- ``accounts:signInWithIdp`` turns the captured redirect (or an already
  obtained provider token) into a session;
- the secure token endpoint refreshes the session's ID token.

Session tokens are kept in memory for the life of the backend.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import asyncio
import base64
import inspect
import json
import logging
import time
import webbrowser

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx

from ..exceptions import (
    AuthFlowCancelled,
    AuthFlowTimeout,
    BackendError,
    ConfigErrorKind,
    ConfigurationError,
    NetworkError,
    NoActiveSessionError,
    TokenError,
    TokenRefreshError,
)
from ..types import BackendAuthResult, HandshakeMode
from .callback_server import CallbackServer
from .listeners import SessionListenerRegistry


if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from ..auth.backend import BackendSessionListener
    from ..types import ProviderRequest


logger = logging.getLogger("fedsignin.backends")

# Refresh this many seconds before the ID token actually expires.
EXPIRY_SKEW_SECONDS = 30

# Refresh failures after which the session can no longer be used.
SESSION_ENDING_CODES = frozenset({"TOKEN_EXPIRED", "USER_DISABLED", "USER_NOT_FOUND", "INVALID_REFRESH_TOKEN"})

# signInWithIdp response fields kept as the user record.
_USER_FIELDS = ("localId", "email", "emailVerified", "displayName", "photoUrl", "providerId", "federatedId")

# requestUri for token exchanges, which have no browser redirect.
_TOKEN_EXCHANGE_REQUEST_URI = "http://localhost"


@dataclass
class SessionTokens:
    """Tokens backing the current session.

    Attributes
    ----------
    id_token : str
        The backend-issued ID token (JWT).
    refresh_token : str or None
        Token used to obtain a new ID token.
    expires_in : int or None
        ID token lifetime in seconds from issuance.
    issued_at : float
        Unix timestamp when the ID token was issued.
    """

    id_token: str
    refresh_token: str | None = None
    expires_in: int | None = None
    issued_at: float = field(default_factory=time.time)

    @property
    def expires_at(self) -> float | None:
        """Expiry timestamp, or None if the token does not expire."""
        if self.expires_in is None:
            return None
        return self.issued_at + self.expires_in

    @property
    def is_expired(self) -> bool:
        """Whether the ID token is expired or about to expire."""
        expires_at = self.expires_at
        if expires_at is None:
            return False
        return time.time() > expires_at - EXPIRY_SKEW_SECONDS


def decode_jwt_claims(token: str) -> dict[str, Any]:
    """Decode a JWT payload without verifying its signature.

    Parameters
    ----------
    token : str
        A compact-serialized JWT.

    Returns
    -------
    dict[str, Any]
        The payload claims.

    Raises
    ------
    TokenError
        If the token is not a well-formed JWT.
    """
    parts = token.split(".")
    if len(parts) != 3:
        msg = "Malformed ID token"
        raise TokenError(msg)
    segment = parts[1] + "=" * (-len(parts[1]) % 4)
    try:
        claims = json.loads(base64.urlsafe_b64decode(segment))
    except ValueError as exc:
        msg = f"Malformed ID token payload: {exc}"
        raise TokenError(msg) from exc
    if not isinstance(claims, dict):
        msg = "ID token payload is not a JSON object"
        raise TokenError(msg)
    return claims


def _error_code(response: httpx.Response) -> tuple[str | None, str]:
    """Extract ``(code, message)`` from an Identity Toolkit error response.

    Error messages look like ``"CODE"`` or ``"CODE : detail"``.
    """
    try:
        body = response.json()
    except ValueError:
        return None, f"HTTP {response.status_code}"
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        message = str(error.get("message") or f"HTTP {response.status_code}")
    elif isinstance(error, str):
        # The secure token endpoint uses OAuth-style {"error": "...", ...}.
        message = str(body.get("error_description") or error)
        return error.upper(), message
    else:
        return None, f"HTTP {response.status_code}"
    code = message.split(" : ", 1)[0].strip()
    return code or None, message


class IdentityToolkitBackend:
    """``IdentityBackend`` backed by the Identity Toolkit REST API.

    Parameters
    ----------
    api_key : str, optional
        Web API key. Defaults to ``IdentityToolkitSettings.api_key``.
    base_url : str, optional
        Identity Toolkit base URL. Defaults to the configured one.
    token_url : str, optional
        Secure token endpoint. Defaults to the configured one.
    timeout : float, optional
        HTTP timeout in seconds. Defaults to the configured one.
    handshake_timeout : float, optional
        Seconds to wait for the browser redirect. Defaults to the
        configured one.
    open_url : callable, optional
        Opens the provider's authorization URL. May be sync or async.
        Defaults to ``webbrowser.open`` run in a worker thread.
    client : httpx.AsyncClient, optional
        HTTP client to use instead of an internally created one.
    callback_host : str
        Bind address of the loopback redirect listener.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        token_url: str | None = None,
        timeout: float | None = None,
        handshake_timeout: float | None = None,
        open_url: Callable[[str], Any] | None = None,
        client: httpx.AsyncClient | None = None,
        callback_host: str = "127.0.0.1",
    ) -> None:
        """Initialize the Identity Toolkit backend."""
        from ..config import get_settings

        settings = get_settings().toolkit
        self.api_key = settings.api_key if api_key is None else api_key
        self.base_url = (base_url or settings.base_url).rstrip("/")
        self.token_url = token_url or settings.token_url
        self.timeout = timeout or settings.timeout_seconds
        self.handshake_timeout = handshake_timeout or settings.handshake_timeout_seconds
        self.open_url = open_url
        self.callback_host = callback_host

        self._http_client = client
        self._handshake: asyncio.Future[BackendAuthResult] | None = None
        self._callback_server: CallbackServer | None = None
        self._user: dict[str, Any] | None = None
        self._tokens: SessionTokens | None = None
        self._refresh_lock = asyncio.Lock()
        self._listeners = SessionListenerRegistry()

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the shared HTTP client."""
        if self._http_client is None or self._http_client.is_closed:
            self._http_client = httpx.AsyncClient(timeout=self.timeout)
        return self._http_client

    async def close(self) -> None:
        """Cancel any handshake and close the HTTP client."""
        self.cancel_handshake()
        if self._http_client is not None and not self._http_client.is_closed:
            await self._http_client.aclose()
            self._http_client = None

    # ── Handshake ────────────────────────────────────────────────────

    def pending_result(self) -> Awaitable[BackendAuthResult] | None:
        """Return the outstanding handshake, if one has not been consumed."""
        task = self._handshake
        if task is None:
            return None
        return self._consume(task)

    async def start_handshake(
        self,
        request: ProviderRequest,
        mode: HandshakeMode = HandshakeMode.SIGN_IN,
    ) -> BackendAuthResult:
        """Run the browser redirect handshake for ``request``.

        Raises
        ------
        BackendError
            With code ``HANDSHAKE_IN_PROGRESS`` if another handshake is
            still waiting for its redirect.
        """
        current = self._handshake
        if current is not None and not current.done():
            msg = "A sign-in handshake is already in progress"
            raise BackendError(msg, code="HANDSHAKE_IN_PROGRESS", provider=request.provider_ref)
        task = asyncio.ensure_future(self._run_handshake(request, mode))
        self._handshake = task
        return await self._consume(task)

    def cancel_handshake(self) -> None:
        """Abandon the redirect wait; the handshake fails as cancelled."""
        server = self._callback_server
        if server is not None:
            server.cancel()

    async def _consume(self, task: asyncio.Future[BackendAuthResult]) -> BackendAuthResult:
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._handshake is task:
                self._handshake = None

    async def _run_handshake(self, request: ProviderRequest, mode: HandshakeMode) -> BackendAuthResult:
        provider_ref = request.provider_ref
        server = CallbackServer(host=self.callback_host)
        continue_uri = server.start()
        self._callback_server = server
        try:
            payload: dict[str, Any] = {"providerId": provider_ref, "continueUri": continue_uri}
            if request.custom_parameters:
                payload["customParameter"] = dict(request.custom_parameters)
            if request.scopes:
                payload["oauthScope"] = " ".join(request.scopes)
            data = await self._post("accounts:createAuthUri", payload, provider_ref)

            auth_uri = data.get("authUri")
            if not auth_uri:
                msg = f"Identity backend returned no authorization URI for provider {provider_ref}"
                raise BackendError(msg, code="INVALID_PROVIDER_ID", provider=provider_ref)

            logger.info("Opening %s sign-in page", provider_ref)
            await self._open(auth_uri)
            callback = await asyncio.to_thread(server.wait_for_callback, self.handshake_timeout)

            if callback is None:
                if server.cancelled:
                    msg = "Sign-in was cancelled"
                    raise AuthFlowCancelled(msg, provider=provider_ref)
                msg = f"No redirect received within {self.handshake_timeout}s"
                raise AuthFlowTimeout(msg, timeout=self.handshake_timeout, provider=provider_ref)
            if callback.error == "access_denied":
                msg = f"Sign-in cancelled at the identity provider: {callback.error_description or callback.error}"
                raise AuthFlowCancelled(msg, provider=provider_ref)
            if callback.error:
                msg = f"Identity provider returned error: {callback.error_description or callback.error}"
                raise BackendError(msg, code=callback.error.upper(), provider=provider_ref)

            idp_payload: dict[str, Any] = {
                "requestUri": callback.url,
                "returnSecureToken": True,
                "returnIdpCredential": True,
            }
            if data.get("sessionId"):
                idp_payload["sessionId"] = data["sessionId"]
            if callback.post_body:
                idp_payload["postBody"] = callback.post_body
            return await self._sign_in_with_idp(idp_payload, provider_ref, mode)
        finally:
            server.cancel()
            if self._callback_server is server:
                self._callback_server = None

    async def _open(self, url: str) -> None:
        if self.open_url is None:
            await asyncio.to_thread(webbrowser.open, url)
            return
        result = self.open_url(url)
        if inspect.isawaitable(result):
            await result

    # ── Token exchange ───────────────────────────────────────────────

    async def exchange_token(
        self,
        provider_ref: str,
        id_token: str,
        access_token: str | None = None,
        mode: HandshakeMode = HandshakeMode.SIGN_IN,
    ) -> BackendAuthResult:
        """Sign in with a provider token obtained outside the handshake."""
        credential = {"id_token": id_token, "providerId": provider_ref}
        if access_token:
            credential["access_token"] = access_token
        payload = {
            "postBody": urlencode(credential),
            "requestUri": _TOKEN_EXCHANGE_REQUEST_URI,
            "returnSecureToken": True,
            "returnIdpCredential": True,
        }
        return await self._sign_in_with_idp(payload, provider_ref, mode)

    async def _sign_in_with_idp(
        self,
        payload: dict[str, Any],
        provider_ref: str,
        mode: HandshakeMode,
    ) -> BackendAuthResult:
        if mode is not HandshakeMode.SIGN_IN:
            if self._user is None:
                msg = "No user is currently signed in"
                raise NoActiveSessionError(msg, provider=provider_ref)
            if mode is HandshakeMode.LINK:
                payload = {**payload, "idToken": await self.fetch_id_token()}

        data = await self._post("accounts:signInWithIdp", payload, provider_ref)
        if data.get("errorMessage"):
            code = str(data["errorMessage"])
            msg = f"Identity backend rejected the credential: {code}"
            raise BackendError(msg, code=code, provider=provider_ref)

        if mode is HandshakeMode.REAUTHENTICATE and self._user is not None:
            if data.get("localId") != self._user.get("localId"):
                msg = "The supplied credentials do not correspond to the previously signed in user"
                raise BackendError(msg, code="USER_MISMATCH", provider=provider_ref)

        return self._commit(data, provider_ref)

    def _commit(self, data: dict[str, Any], provider_ref: str) -> BackendAuthResult:
        source_ref = data.get("providerId") or provider_ref
        user = {key: data[key] for key in _USER_FIELDS if data.get(key) is not None}
        if not user.get("localId") or not data.get("idToken"):
            logger.warning("signInWithIdp for %s returned no user", provider_ref)
            return BackendAuthResult(user=None, provider_ref=source_ref, raw=data)

        expires_in = data.get("expiresIn")
        self._tokens = SessionTokens(
            id_token=data["idToken"],
            refresh_token=data.get("refreshToken"),
            expires_in=int(expires_in) if expires_in else None,
        )
        self._user = user
        self._listeners.notify(user)
        return BackendAuthResult(
            user=dict(user),
            provider_ref=source_ref,
            is_new_user=bool(data.get("isNewUser")),
            raw=data,
        )

    # ── Session ──────────────────────────────────────────────────────

    def sign_out(self) -> None:
        """Drop the session tokens and notify listeners."""
        was_signed_in = self._user is not None
        self._user = None
        self._tokens = None
        if was_signed_in:
            logger.info("Signed out")
            self._listeners.notify(None)

    def current_user(self) -> Mapping[str, Any] | None:
        """Return a copy of the signed-in user's record."""
        return dict(self._user) if self._user is not None else None

    def add_session_listener(self, listener: BackendSessionListener) -> None:
        """Register a session listener."""
        self._listeners.add(listener)

    def remove_session_listener(self, listener: BackendSessionListener) -> None:
        """Unregister a session listener."""
        self._listeners.remove(listener)

    async def fetch_id_token(self, force_refresh: bool = False) -> str:
        """Return the session's ID token, refreshing it when forced or expired.

        Raises
        ------
        NoActiveSessionError
            If nobody is signed in.
        TokenRefreshError
            If the refresh is rejected.
        """
        tokens = self._tokens
        if tokens is None:
            msg = "No user is currently signed in"
            raise NoActiveSessionError(msg)
        if force_refresh or tokens.is_expired:
            async with self._refresh_lock:
                # Another caller may have refreshed while this one waited.
                if self._tokens is tokens:
                    await self._refresh(tokens)
        current = self._tokens
        if current is None:
            msg = "Session ended during token refresh"
            raise NoActiveSessionError(msg)
        return current.id_token

    async def fetch_claims(self) -> Mapping[str, Any]:
        """Return the claims of the session's ID token (unverified)."""
        return decode_jwt_claims(await self.fetch_id_token())

    async def _refresh(self, tokens: SessionTokens) -> None:
        if not tokens.refresh_token:
            msg = "No refresh token available"
            raise TokenRefreshError(msg)
        client = await self._get_client()
        try:
            response = await client.post(
                self.token_url,
                params={"key": self.api_key},
                data={"grant_type": "refresh_token", "refresh_token": tokens.refresh_token},
            )
        except httpx.TransportError as exc:
            msg = f"Network error while refreshing the ID token: {exc}"
            raise NetworkError(msg) from exc

        if response.is_error:
            code, message = _error_code(response)
            if code in SESSION_ENDING_CODES:
                logger.warning("Session ended by the identity backend (%s)", code)
                self.sign_out()
            msg = f"Token refresh failed: {message}"
            raise TokenRefreshError(msg, code=code)

        try:
            data = response.json()
            expires_in = data.get("expires_in")
            self._tokens = SessionTokens(
                id_token=data["id_token"],
                refresh_token=data.get("refresh_token") or tokens.refresh_token,
                expires_in=int(expires_in) if expires_in else None,
            )
        except (ValueError, KeyError, TypeError, AttributeError) as exc:
            msg = f"Token refresh failed: malformed response ({exc.__class__.__name__})"
            raise TokenRefreshError(msg) from exc
        logger.debug("ID token refreshed")

        user_id = data.get("user_id")
        if user_id and self._user is not None and user_id != self._user.get("localId"):
            self._user = {"localId": user_id}
            self._listeners.notify(self._user)

    # ── HTTP ─────────────────────────────────────────────────────────

    async def _post(self, method: str, payload: dict[str, Any], provider_ref: str | None) -> dict[str, Any]:
        if not self.api_key:
            msg = "Identity Toolkit API key is not configured"
            raise ConfigurationError(
                msg, kind=ConfigErrorKind.MISSING_REQUIRED, source="FEDSIGNIN_TOOLKIT__API_KEY"
            )
        client = await self._get_client()
        try:
            response = await client.post(
                f"{self.base_url}/{method}",
                params={"key": self.api_key},
                json=payload,
            )
        except httpx.TransportError as exc:
            msg = f"Network error contacting the identity backend: {exc}"
            raise NetworkError(msg, provider=provider_ref) from exc

        if response.is_error:
            code, message = _error_code(response)
            logger.debug("%s failed with %s", method, code)
            raise BackendError(message, code=code, provider=provider_ref)
        try:
            data = response.json()
        except ValueError as exc:
            msg = f"{method} returned a malformed response"
            raise BackendError(msg, code="MALFORMED_RESPONSE", provider=provider_ref) from exc
        if not isinstance(data, dict):
            msg = f"{method} returned a malformed response"
            raise BackendError(msg, code="MALFORMED_RESPONSE", provider=provider_ref)
        return data
