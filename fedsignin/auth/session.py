"""Session queries and lifecycle backed by the identity backend.

The backend is the source of truth for the session. This facade only
projects its user record into a ``Principal`` and turns token lookups into
``None``-on-absence calls, since a missing token is a normal state callers
must handle.
"""

# pylint: disable=logging-too-many-args

from __future__ import annotations

import logging
import threading

from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from ..log import log_listener_error
from ..types import Principal


if TYPE_CHECKING:
    from .backend import BackendSessionListener, IdentityBackend


logger = logging.getLogger("fedsignin.auth")

SessionListener = Callable[[Principal | None], None]


class SessionFacade:
    """Current-session queries and sign-out for the UI layer.

    Parameters
    ----------
    backend : IdentityBackend
        The backend that owns the session.
    """

    def __init__(self, backend: IdentityBackend) -> None:
        """Initialize the session facade."""
        self.backend = backend
        self._listeners: dict[SessionListener, BackendSessionListener] = {}
        self._lock = threading.Lock()

    def current_principal(self) -> Principal | None:
        """Return the signed-in principal, or None."""
        return Principal.from_user_info(self.backend.current_user(), self.backend)

    def is_authenticated(self) -> bool:
        """Whether a user is signed in."""
        return self.current_principal() is not None

    async def id_token(self, force_refresh: bool = False) -> str | None:
        """Return the session's ID token.

        Parameters
        ----------
        force_refresh : bool
            Ask the backend for a fresh token even if the cached one is valid.

        Returns
        -------
        str or None
            The token, or None when nobody is signed in or the backend
            failed. Failures are logged, never raised.
        """
        principal = self.current_principal()
        if principal is None:
            return None
        try:
            return await principal.id_token(force_refresh)
        except Exception as exc:
            logger.warning("Failed to fetch ID token: %s", exc)
            return None

    async def claims(self) -> dict[str, Any] | None:
        """Return the ID token claims, or None (same contract as ``id_token``)."""
        principal = self.current_principal()
        if principal is None:
            return None
        try:
            return await principal.claims()
        except Exception as exc:
            logger.warning("Failed to fetch claims: %s", exc)
            return None

    def sign_out(self) -> None:
        """End the session. The backend notifies session listeners."""
        self.backend.sign_out()
        logger.info("Signed out")

    def add_session_listener(self, listener: SessionListener) -> None:
        """Register ``listener`` for every session transition.

        The listener receives the new principal, or None after sign-out.
        Registering the same listener twice has no effect.
        """
        with self._lock:
            if listener in self._listeners:
                return
            backend = self.backend

            def _dispatch(user: Mapping[str, Any] | None) -> None:
                try:
                    listener(Principal.from_user_info(user, backend))
                except Exception as exc:
                    log_listener_error(listener, exc)

            self._listeners[listener] = _dispatch
        self.backend.add_session_listener(_dispatch)

    def remove_session_listener(self, listener: SessionListener) -> None:
        """Unregister ``listener``. Unknown listeners are ignored."""
        with self._lock:
            dispatch = self._listeners.pop(listener, None)
        if dispatch is not None:
            self.backend.remove_session_listener(dispatch)

    # ── Convenience accessors ────────────────────────────────────────

    @property
    def user_id(self) -> str | None:
        """Signed-in user's id."""
        principal = self.current_principal()
        return principal.id if principal else None

    @property
    def email(self) -> str | None:
        """Signed-in user's email."""
        principal = self.current_principal()
        return principal.email if principal else None

    @property
    def display_name(self) -> str | None:
        """Signed-in user's display name."""
        principal = self.current_principal()
        return principal.display_name if principal else None

    @property
    def photo_url(self) -> str | None:
        """Signed-in user's photo URL."""
        principal = self.current_principal()
        return principal.photo_url if principal else None
