"""Explicit dependency container for the sign-in core.

One ``AuthContext`` per process replaces hidden singletons: it owns the
backend handle, the config store and the lazily created controller and
session facade, and is passed to whatever needs them.
"""

from __future__ import annotations

from functools import cached_property
from typing import TYPE_CHECKING

from ..log import get_logger
from .config_store import ConfigStore, get_config_store
from .flow import SignInFlowController
from .session import SessionFacade


if TYPE_CHECKING:
    from collections.abc import Callable

    from ..types import FlowState
    from .backend import IdentityBackend, NativeCredentialProvider
    from .config_store import AuthConfig


class AuthContext:
    """Wires the backend, configuration, controller and session together.

    Parameters
    ----------
    backend : IdentityBackend
        The process-wide identity backend.
    config_store : ConfigStore, optional
        Config store to use; defaults to the process-wide store from
        ``get_config_store()``.
    credential_provider : NativeCredentialProvider, optional
        Platform account picker for native sign-in.
    on_transition : callable, optional
        Forwarded to ``SignInFlowController``.
    """

    def __init__(
        self,
        backend: IdentityBackend,
        config_store: ConfigStore | None = None,
        credential_provider: NativeCredentialProvider | None = None,
        on_transition: Callable[[FlowState, FlowState], None] | None = None,
    ) -> None:
        """Initialize the auth context."""
        get_logger()
        self.backend = backend
        self.config_store = config_store or get_config_store()
        self.credential_provider = credential_provider
        self._on_transition = on_transition

    @property
    def config(self) -> AuthConfig:
        """The loaded provider configuration.

        Raises
        ------
        ConfigurationError
            If the configuration cannot be loaded.
        """
        return self.config_store.load()

    @cached_property
    def session(self) -> SessionFacade:
        """The session facade (created on first access)."""
        return SessionFacade(self.backend)

    @cached_property
    def controller(self) -> SignInFlowController:
        """The flow controller (created on first access)."""
        return SignInFlowController(
            backend=self.backend,
            config_store=self.config_store,
            session=self.session,
            credential_provider=self.credential_provider,
            on_transition=self._on_transition,
        )
