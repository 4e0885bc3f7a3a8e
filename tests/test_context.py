"""Tests for the AuthContext dependency container."""

from __future__ import annotations

import asyncio

from pathlib import Path

import pytest

from fedsignin import AuthContext
from fedsignin.auth.config_store import ConfigStore, get_config_store
from fedsignin.backends.memory import InMemoryIdentityBackend
from fedsignin.exceptions import ConfigurationError
from fedsignin.types import FlowState


class TestAuthContext:
    """Tests for AuthContext wiring."""

    def test_default_config_store(self, backend: InMemoryIdentityBackend) -> None:
        """Without a store the process-wide default is used."""
        context = AuthContext(backend)
        assert context.config_store is get_config_store()

    def test_config_from_settings_path(
        self, backend: InMemoryIdentityBackend, properties_file: Path
    ) -> None:
        """The default store reads the configured properties file."""
        context = AuthContext(backend)
        assert context.config.oidc_provider_ref == "oidc.okta"
        assert context.config_store.is_loaded

    def test_missing_configuration(self, backend: InMemoryIdentityBackend, tmp_path: Path) -> None:
        """An unreadable source surfaces as ConfigurationError."""
        context = AuthContext(backend, config_store=ConfigStore(tmp_path / "missing.properties"))
        with pytest.raises(ConfigurationError):
            _ = context.config

    def test_components_are_shared(
        self, backend: InMemoryIdentityBackend, okta_store: ConfigStore
    ) -> None:
        """The controller and session are created once and share the backend."""
        context = AuthContext(backend, config_store=okta_store)
        assert context.session is context.session
        assert context.controller is context.controller
        assert context.controller.session is context.session
        assert context.controller.backend is backend
        assert context.controller.config_store is okta_store

    def test_sign_in_through_context(
        self, backend: InMemoryIdentityBackend, okta_store: ConfigStore
    ) -> None:
        """A sign-in through the controller is visible on the session."""
        transitions: list[tuple[FlowState, FlowState]] = []
        context = AuthContext(
            backend,
            config_store=okta_store,
            on_transition=lambda old, new: transitions.append((old, new)),
        )

        outcome = asyncio.run(context.controller.start_sign_in())

        assert outcome.ok
        assert context.session.user_id == "u-alice"
        assert transitions == [
            (FlowState.IDLE, FlowState.AWAITING_EXTERNAL_REDIRECT),
            (FlowState.AWAITING_EXTERNAL_REDIRECT, FlowState.COMPLETED),
            (FlowState.COMPLETED, FlowState.IDLE),
        ]
        assert context.controller.flow_state is FlowState.IDLE
