"""Session listener registry shared by the bundled backends."""

from __future__ import annotations

import threading

from typing import TYPE_CHECKING, Any

from ..log import log_listener_error


if TYPE_CHECKING:
    from collections.abc import Mapping

    from ..auth.backend import BackendSessionListener


class SessionListenerRegistry:
    """Ordered set of session listeners.

    Listeners run synchronously, in registration order, after the caller
    has committed the session change. A failing listener is logged and
    does not stop delivery to the others.
    """

    def __init__(self) -> None:
        """Initialize an empty registry."""
        self._listeners: list[BackendSessionListener] = []
        self._lock = threading.Lock()

    def __len__(self) -> int:
        """Number of registered listeners."""
        return len(self._listeners)

    def add(self, listener: BackendSessionListener) -> None:
        """Register a listener (no-op if already registered)."""
        with self._lock:
            if listener not in self._listeners:
                self._listeners.append(listener)

    def remove(self, listener: BackendSessionListener) -> None:
        """Unregister a listener (no-op if unknown)."""
        with self._lock:
            if listener in self._listeners:
                self._listeners.remove(listener)

    def notify(self, user: Mapping[str, Any] | None) -> None:
        """Deliver ``user`` (or None after sign-out) to every listener."""
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(dict(user) if user is not None else None)
            except Exception as exc:
                log_listener_error(listener, exc)
