"""Classification of sign-in errors into advisory failure kinds.

The kind only drives UI messaging. Control flow never branches on it.
"""

from __future__ import annotations

import httpx

from ..exceptions import (
    AuthFlowCancelled,
    BackendError,
    ConfigurationError,
    FedSignInException,
    NetworkError,
    NoActiveSessionError,
)
from ..types import FailureKind, ProviderKind, SignInFailure, provider_kind


# Backend error codes meaning the provider is unknown or disabled.
PROVIDER_CONFIGURATION_CODES = frozenset(
    {
        "CONFIGURATION_NOT_FOUND",
        "OPERATION_NOT_ALLOWED",
        "INVALID_PROVIDER_ID",
        "INVALID_IDP_RESPONSE",
    }
)


def classify_failure(error: BaseException) -> FailureKind:
    """Classify a backend or credential error.

    Typed errors are classified first, then the message text is inspected
    case-insensitively: ``provider`` before ``network`` before ``cancel``.
    """
    if isinstance(error, AuthFlowCancelled):
        return FailureKind.USER_CANCELLED
    if isinstance(error, NoActiveSessionError):
        return FailureKind.NO_ACTIVE_SESSION
    if isinstance(error, ConfigurationError):
        return FailureKind.PROVIDER_NOT_CONFIGURED
    if isinstance(error, (NetworkError, ConnectionError, TimeoutError, httpx.TransportError)):
        return FailureKind.NETWORK_ERROR
    if isinstance(error, BackendError) and error.code in PROVIDER_CONFIGURATION_CODES:
        return FailureKind.PROVIDER_NOT_CONFIGURED

    # Context rendered by __str__ (provider=..., code=...) must not match.
    text = error.message if isinstance(error, FedSignInException) else str(error)
    message = text.lower()
    if "provider" in message:
        return FailureKind.PROVIDER_NOT_CONFIGURED
    if "network" in message:
        return FailureKind.NETWORK_ERROR
    if "cancel" in message:
        return FailureKind.USER_CANCELLED
    return FailureKind.UNKNOWN


def failure_from_error(error: BaseException, provider_ref: str | None) -> SignInFailure:
    """Wrap an error into a ``SignInFailure`` value."""
    return SignInFailure(
        kind=classify_failure(error),
        message=str(error) or error.__class__.__name__,
        cause_provider_ref=provider_ref,
        error=error,
    )


def describe_failure(failure: SignInFailure) -> str:
    """Return a user-facing message for a failure."""
    label = _provider_label(failure.cause_provider_ref)
    if failure.kind is FailureKind.PROVIDER_NOT_CONFIGURED:
        return (
            f"[{label}] Provider not configured. Check that the provider ID in the "
            "configuration matches the identity backend and that the provider is enabled."
        )
    if failure.kind is FailureKind.NETWORK_ERROR:
        return "Network error. Please check your connection."
    if failure.kind is FailureKind.USER_CANCELLED:
        return "Authentication cancelled by user."
    if failure.kind is FailureKind.NULL_PRINCIPAL:
        return f"[{label}] Sign-in did not return a user."
    if failure.kind is FailureKind.NO_ACTIVE_SESSION:
        return "No user is currently signed in."
    return f"[{label}] Authentication failed: {failure.message}"


def _provider_label(provider_ref: str | None) -> str:
    if not provider_ref:
        return "Unknown"
    kind = provider_kind(provider_ref)
    if kind is ProviderKind.GOOGLE:
        return "Google"
    return kind.value.upper()
