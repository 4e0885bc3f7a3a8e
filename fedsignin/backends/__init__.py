"""Bundled ``IdentityBackend`` implementations."""

from __future__ import annotations

from .callback_server import CallbackResult, CallbackServer
from .identity_toolkit import IdentityToolkitBackend, SessionTokens, decode_jwt_claims
from .listeners import SessionListenerRegistry
from .memory import InMemoryIdentityBackend


__all__ = [
    "CallbackResult",
    "CallbackServer",
    "IdentityToolkitBackend",
    "InMemoryIdentityBackend",
    "SessionListenerRegistry",
    "SessionTokens",
    "decode_jwt_claims",
]
