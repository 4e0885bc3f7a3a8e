"""Federated sign-in orchestration.

Provides provider configuration loading, request construction, the sign-in
flow state machine, and the session facade, all driven through an
``IdentityBackend``.
"""

from __future__ import annotations

from .backend import IdentityBackend, NativeCredentialProvider
from .config_store import (
    AuthConfig,
    ConfigStore,
    get_config_store,
    parse_custom_parameters,
    parse_properties,
    parse_scopes,
    reset_config_store,
)
from .context import AuthContext
from .failures import classify_failure, describe_failure
from .flow import SignInFlowController
from .request import build_provider_request
from .session import SessionFacade


__all__ = [
    "AuthConfig",
    "AuthContext",
    "ConfigStore",
    "IdentityBackend",
    "NativeCredentialProvider",
    "SessionFacade",
    "SignInFlowController",
    "build_provider_request",
    "classify_failure",
    "describe_failure",
    "get_config_store",
    "parse_custom_parameters",
    "parse_properties",
    "parse_scopes",
    "reset_config_store",
]
