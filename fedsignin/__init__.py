"""fedsignin - federated sign-in orchestration.

Drives OIDC and SAML sign-in through a pluggable identity backend:
provider configuration loading, provider request construction, a sign-in
flow state machine that resumes interrupted redirect handshakes, and a
read-only session facade.
"""

from .auth import (
    AuthConfig,
    AuthContext,
    ConfigStore,
    IdentityBackend,
    NativeCredentialProvider,
    SessionFacade,
    SignInFlowController,
    build_provider_request,
    classify_failure,
    describe_failure,
    get_config_store,
    reset_config_store,
)
from .backends import IdentityToolkitBackend, InMemoryIdentityBackend
from .config import FedSignInSettings, get_settings, reload_settings
from .exceptions import (
    AuthenticationError,
    AuthFlowCancelled,
    AuthFlowTimeout,
    BackendError,
    ConfigErrorKind,
    ConfigurationError,
    FedSignInException,
    NetworkError,
    NoActiveSessionError,
    TokenError,
    TokenRefreshError,
)
from .types import (
    BackendAuthResult,
    FailureKind,
    FlowState,
    HandshakeMode,
    NativeCredential,
    Principal,
    ProviderKind,
    ProviderRequest,
    SignInFailure,
    SignInOutcome,
    SignInSuccess,
)


__version__ = "0.1.0"

__all__ = [
    "AuthConfig",
    "AuthContext",
    "AuthFlowCancelled",
    "AuthFlowTimeout",
    "AuthenticationError",
    "BackendAuthResult",
    "BackendError",
    "ConfigErrorKind",
    "ConfigStore",
    "ConfigurationError",
    "FailureKind",
    "FedSignInException",
    "FedSignInSettings",
    "FlowState",
    "HandshakeMode",
    "IdentityBackend",
    "IdentityToolkitBackend",
    "InMemoryIdentityBackend",
    "NativeCredential",
    "NativeCredentialProvider",
    "NetworkError",
    "NoActiveSessionError",
    "Principal",
    "ProviderKind",
    "ProviderRequest",
    "SessionFacade",
    "SignInFailure",
    "SignInFlowController",
    "SignInOutcome",
    "SignInSuccess",
    "TokenError",
    "TokenRefreshError",
    "build_provider_request",
    "classify_failure",
    "describe_failure",
    "get_config_store",
    "get_settings",
    "reload_settings",
    "reset_config_store",
]
