"""fedsignin exception hierarchy.

All fedsignin-specific exceptions inherit from FedSignInException, enabling
catch-all handling while supporting specific error types.

Sign-in entry points never raise these for expected failures; they are
converted to ``SignInFailure`` values at the controller boundary.
"""

from __future__ import annotations

from enum import Enum
from typing import Any


class FedSignInException(Exception):
    """Base exception for all fedsignin errors."""

    def __init__(self, message: str, **context: Any) -> None:
        """Initialize fedsignin exception.

        Parameters
        ----------
        message : str
            Human-readable error message.
        **context : Any
            Additional context (provider, source, code, etc.).
        """
        super().__init__(message)
        self.message = message
        self.context = context

    def __str__(self) -> str:
        """Format exception with context."""
        ctx = {k: v for k, v in self.context.items() if v is not None}
        if ctx:
            rendered = ", ".join(f"{k}={v!r}" for k, v in ctx.items())
            return f"{self.message} ({rendered})"
        return self.message


class ConfigErrorKind(str, Enum):
    """Why a provider configuration could not be loaded."""

    MISSING_REQUIRED = "missing_required"
    INVALID_FORMAT = "invalid_format"
    NO_PROVIDER_CONFIGURED = "no_provider_configured"


class ConfigurationError(FedSignInException):
    """Provider configuration is missing or invalid.

    Fatal to startup: the UI layer is expected to disable its sign-in
    controls when this is raised.
    """

    def __init__(
        self,
        message: str,
        kind: ConfigErrorKind,
        source: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize configuration error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        kind : ConfigErrorKind
            Classification of the failure.
        source : str, optional
            Description of the configuration source (usually a path).
        **context : Any
            Additional context.
        """
        super().__init__(message, kind=kind.value, source=source, **context)
        self.kind = kind
        self.source = source


class AuthenticationError(FedSignInException):
    """Base exception for all authentication failures.

    Raised by backends and credential providers when a handshake, token
    exchange or token operation fails.
    """

    def __init__(
        self,
        message: str,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize authentication error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        provider : str, optional
            The provider reference involved (e.g. ``"oidc.okta"``).
        flow_id : str, optional
            The unique identifier of the auth flow that failed.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, **context)
        self.provider = provider
        self.flow_id = flow_id


class AuthFlowCancelled(AuthenticationError):
    """Authentication flow was cancelled.

    Raised when the user closes the browser tab, dismisses an account
    picker, or the redirect reports ``access_denied``.
    """


class AuthFlowTimeout(AuthenticationError):
    """Authentication flow timed out.

    Raised by a backend when its own wait for the redirect exceeds its
    configured timeout. The core imposes no timeout of its own.
    """

    def __init__(
        self,
        message: str,
        timeout: float,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize timeout error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        timeout : float
            The timeout value in seconds.
        provider : str, optional
            The provider reference.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, timeout=timeout, **context)
        self.timeout = timeout


class BackendError(AuthenticationError):
    """The identity backend rejected a request.

    ``code`` carries the backend's own error code (for example
    ``CONFIGURATION_NOT_FOUND``) when one was supplied.
    """

    def __init__(
        self,
        message: str,
        code: str | None = None,
        provider: str | None = None,
        flow_id: str | None = None,
        **context: Any,
    ) -> None:
        """Initialize backend error.

        Parameters
        ----------
        message : str
            Human-readable error message.
        code : str, optional
            Backend error code.
        provider : str, optional
            The provider reference.
        flow_id : str, optional
            The unique identifier of the auth flow.
        **context : Any
            Additional context.
        """
        super().__init__(message, provider=provider, flow_id=flow_id, code=code, **context)
        self.code = code


class NetworkError(BackendError):
    """The identity backend could not be reached."""


class NoActiveSessionError(AuthenticationError):
    """An operation needed a signed-in user but there is none."""


class TokenError(AuthenticationError):
    """Base exception for token-related failures."""


class TokenRefreshError(TokenError):
    """Refreshing the session's ID token failed."""
