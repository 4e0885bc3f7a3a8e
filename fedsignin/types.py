"""Type definitions shared by the sign-in core and its backends."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any


if TYPE_CHECKING:
    from .auth.backend import IdentityBackend


class FlowState(str, Enum):
    """State of the sign-in flow controller."""

    IDLE = "idle"
    AWAITING_EXTERNAL_REDIRECT = "awaiting_external_redirect"
    RESUMING = "resuming"
    COMPLETED = "completed"
    FAILED = "failed"


class FailureKind(str, Enum):
    """Advisory classification of a failed sign-in attempt."""

    PROVIDER_NOT_CONFIGURED = "provider_not_configured"
    NETWORK_ERROR = "network_error"
    USER_CANCELLED = "user_cancelled"
    NULL_PRINCIPAL = "null_principal"
    NO_ACTIVE_SESSION = "no_active_session"
    UNKNOWN = "unknown"


class ProviderKind(str, Enum):
    """Protocol family of a provider reference, derived from its prefix."""

    OIDC = "oidc"
    SAML = "saml"
    GOOGLE = "google"
    OAUTH = "oauth"


class HandshakeMode(str, Enum):
    """What a completed handshake does to the session."""

    SIGN_IN = "sign_in"
    REAUTHENTICATE = "reauthenticate"
    LINK = "link"


OIDC_PREFIX = "oidc."
SAML_PREFIX = "saml."
GOOGLE_PROVIDER_REF = "google.com"


def provider_kind(provider_ref: str) -> ProviderKind:
    """Classify a provider reference by its prefix.

    Anything outside the ``oidc.`` / ``saml.`` / ``google.com`` family is
    reported as a generic OAuth provider.
    """
    if provider_ref.startswith(OIDC_PREFIX):
        return ProviderKind.OIDC
    if provider_ref.startswith(SAML_PREFIX):
        return ProviderKind.SAML
    if provider_ref == GOOGLE_PROVIDER_REF:
        return ProviderKind.GOOGLE
    return ProviderKind.OAUTH


@dataclass(frozen=True)
class ProviderRequest:
    """Provider-specific authentication request for one sign-in attempt.

    Attributes
    ----------
    provider_ref : str
        Provider reference (e.g. ``"oidc.okta"``, ``"saml.adfs"``).
    custom_parameters : Mapping[str, str]
        Extra parameters forwarded to the provider (e.g. ``tenant``).
    scopes : tuple[str, ...]
        Requested authorization scopes, in order.
    """

    provider_ref: str
    custom_parameters: Mapping[str, str] = field(default_factory=dict)
    scopes: tuple[str, ...] = ()

    @property
    def kind(self) -> ProviderKind:
        """Protocol family of this request's provider."""
        return provider_kind(self.provider_ref)


@dataclass
class BackendAuthResult:
    """Result of a backend handshake or token exchange.

    Attributes
    ----------
    user : Mapping[str, Any] or None
        The backend's user record, or None when the backend reported
        success without a user.
    provider_ref : str or None
        Provider the result came from, when the backend reports it.
    is_new_user : bool
        Whether the backend created the account during this attempt.
    raw : dict[str, Any]
        The raw backend response.
    """

    user: Mapping[str, Any] | None
    provider_ref: str | None = None
    is_new_user: bool = False
    raw: dict[str, Any] = field(default_factory=dict)


# User-record keys accepted for each principal field, in priority order.
_ID_KEYS = ("uid", "localId", "local_id", "sub", "user_id", "id")
_DISPLAY_NAME_KEYS = ("displayName", "display_name", "name", "fullName")
_EMAIL_KEYS = ("email",)
_PHOTO_KEYS = ("photoUrl", "photo_url", "picture", "avatar_url")


def _first(record: Mapping[str, Any], keys: tuple[str, ...]) -> str | None:
    for key in keys:
        value = record.get(key)
        if value not in (None, ""):
            return str(value)
    return None


@dataclass(frozen=True)
class Principal:
    """Normalized, read-only projection of the signed-in user.

    Valid only while the backing session exists. Tokens are not stored
    here; ``id_token`` and ``claims`` ask the backend each time.
    """

    id: str
    display_name: str | None = None
    email: str | None = None
    photo_url: str | None = None
    provider_ref: str | None = None
    _backend: IdentityBackend | None = field(default=None, repr=False, compare=False)

    @classmethod
    def from_user_info(
        cls,
        user_info: Mapping[str, Any] | None,
        backend: IdentityBackend | None = None,
        provider_ref: str | None = None,
    ) -> Principal | None:
        """Build a principal from a heterogeneous user record.

        Parameters
        ----------
        user_info : Mapping or None
            User record as returned by a backend or provider.
        backend : IdentityBackend, optional
            Backend used for lazy token and claims lookups.
        provider_ref : str, optional
            Provider that produced the record, if not in the record itself.

        Returns
        -------
        Principal or None
            None when there is no record or it carries no user id.
        """
        if not user_info:
            return None
        user_id = _first(user_info, _ID_KEYS)
        if user_id is None:
            return None
        return cls(
            id=user_id,
            display_name=_first(user_info, _DISPLAY_NAME_KEYS),
            email=_first(user_info, _EMAIL_KEYS),
            photo_url=_first(user_info, _PHOTO_KEYS),
            provider_ref=_first(user_info, ("providerId", "provider_id")) or provider_ref,
            _backend=backend,
        )

    async def id_token(self, force_refresh: bool = False) -> str:
        """Fetch the session's ID token from the backend."""
        if self._backend is None:
            msg = "Principal is not bound to a backend"
            raise RuntimeError(msg)
        return await self._backend.fetch_id_token(force_refresh)

    async def claims(self) -> dict[str, Any]:
        """Fetch the ID token claims from the backend."""
        if self._backend is None:
            msg = "Principal is not bound to a backend"
            raise RuntimeError(msg)
        return dict(await self._backend.fetch_claims())


@dataclass(frozen=True)
class SignInSuccess:
    """A sign-in attempt that produced a principal."""

    principal: Principal
    is_new_user: bool = False

    @property
    def ok(self) -> bool:
        """Always True."""
        return True


@dataclass(frozen=True)
class SignInFailure:
    """A sign-in attempt that failed.

    ``kind`` is advisory, for UI messaging only.
    """

    kind: FailureKind
    message: str
    cause_provider_ref: str | None = None
    error: BaseException | None = field(default=None, repr=False, compare=False)

    @property
    def ok(self) -> bool:
        """Always False."""
        return False


SignInOutcome = SignInSuccess | SignInFailure


@dataclass(frozen=True)
class NativeCredential:
    """Credential obtained from a platform-native account picker.

    Attributes
    ----------
    id_token : str
        ID token issued to the picked account.
    access_token : str or None
        Optional access token.
    provider_ref : str
        Provider the token belongs to (``"google.com"`` by default).
    email : str or None
        Account email reported by the picker.
    display_name : str or None
        Account display name reported by the picker.
    """

    id_token: str
    access_token: str | None = None
    provider_ref: str = GOOGLE_PROVIDER_REF
    email: str | None = None
    display_name: str | None = None
