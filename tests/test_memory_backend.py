"""Tests for the in-memory identity backend."""

from __future__ import annotations

import asyncio

from unittest.mock import MagicMock

import pytest

from fedsignin.auth.backend import IdentityBackend
from fedsignin.backends.memory import InMemoryIdentityBackend
from fedsignin.exceptions import BackendError, NoActiveSessionError
from fedsignin.types import HandshakeMode, ProviderRequest


ALICE = {"localId": "u-alice", "email": "alice@example.com"}


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


class TestInMemoryBackend:
    """Tests for InMemoryIdentityBackend."""

    def test_satisfies_protocol(self) -> None:
        """The backend implements IdentityBackend."""
        assert isinstance(InMemoryIdentityBackend(), IdentityBackend)

    def test_handshake_signs_in(self) -> None:
        """A successful handshake establishes the session."""
        backend = InMemoryIdentityBackend(default_user=ALICE)
        result = _run(backend.start_handshake(ProviderRequest("oidc.okta")))
        assert result.user is not None
        assert result.user["localId"] == "u-alice"
        assert result.provider_ref == "oidc.okta"
        assert backend.current_user()["providerId"] == "oidc.okta"

    def test_scripted_results_in_order(self) -> None:
        """Queued results are used before the default user."""
        backend = InMemoryIdentityBackend(default_user=ALICE)
        backend.queue_handshake({"localId": "u-1"})
        backend.queue_handshake(BackendError("down", code="CONFIGURATION_NOT_FOUND"))

        async def scenario() -> list[str]:
            first = await backend.start_handshake(ProviderRequest("oidc.a"))
            with pytest.raises(BackendError):
                await backend.start_handshake(ProviderRequest("oidc.a"))
            third = await backend.start_handshake(ProviderRequest("oidc.a"))
            return [first.user["localId"], third.user["localId"]]

        assert _run(scenario()) == ["u-1", "u-alice"]
        assert backend.calls["start_handshake"] == 3

    def test_unscripted_without_default_fails(self) -> None:
        """With nothing scripted and no default user the provider is unknown."""
        backend = InMemoryIdentityBackend()
        with pytest.raises(BackendError) as exc_info:
            _run(backend.start_handshake(ProviderRequest("oidc.a")))
        assert exc_info.value.code == "CONFIGURATION_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_pending_result_lifecycle(self) -> None:
        """A held handshake is pending until consumed."""
        backend = InMemoryIdentityBackend(hold_redirects=True)
        assert backend.pending_result() is None

        task = asyncio.create_task(backend.start_handshake(ProviderRequest("saml.adfs")))
        await asyncio.sleep(0)
        pending = backend.pending_result()
        assert pending is not None
        backend.complete_redirect(ALICE)
        resumed = await pending
        started = await task

        assert resumed.user["localId"] == started.user["localId"] == "u-alice"
        assert backend.pending_result() is None

    @pytest.mark.asyncio
    async def test_fail_redirect(self) -> None:
        """A held handshake can be failed."""
        backend = InMemoryIdentityBackend(hold_redirects=True)
        task = asyncio.create_task(backend.start_handshake(ProviderRequest("oidc.a")))
        await asyncio.sleep(0)
        backend.fail_redirect(BackendError("denied"))
        with pytest.raises(BackendError):
            await task

    def test_complete_without_held_redirect(self) -> None:
        """Completing when nothing is held is a programming error."""
        with pytest.raises(RuntimeError):
            InMemoryIdentityBackend().complete_redirect(ALICE)

    def test_exchange_token(self) -> None:
        """Token exchanges are recorded and sign the user in."""
        backend = InMemoryIdentityBackend(default_user=ALICE)
        result = _run(backend.exchange_token("google.com", "idt", "at"))
        assert result.user["localId"] == "u-alice"
        assert backend.exchanges == [("google.com", "idt", "at", HandshakeMode.SIGN_IN)]

    def test_reauthenticate_requires_session(self) -> None:
        """Session-bound modes fail without a session."""
        backend = InMemoryIdentityBackend(default_user=ALICE)
        with pytest.raises(NoActiveSessionError):
            _run(backend.exchange_token("oidc.a", "idt", mode=HandshakeMode.REAUTHENTICATE))

    def test_tokens_and_claims(self) -> None:
        """Tokens are issued per session and rotated on forced refresh."""
        backend = InMemoryIdentityBackend()
        with pytest.raises(NoActiveSessionError):
            _run(backend.fetch_id_token())
        with pytest.raises(NoActiveSessionError):
            _run(backend.fetch_claims())

        backend.sign_in_directly(ALICE)
        token = _run(backend.fetch_id_token())
        assert token.startswith("memory-token-u-alice-")
        assert _run(backend.fetch_id_token(force_refresh=True)) != token
        assert _run(backend.fetch_claims())["sub"] == "u-alice"

    def test_listeners_receive_copies(self) -> None:
        """Listeners get a copy of the record, or None on sign-out."""
        backend = InMemoryIdentityBackend()
        listener = MagicMock()
        backend.add_session_listener(listener)
        backend.sign_in_directly(ALICE)
        delivered = listener.call_args.args[0]
        delivered["localId"] = "tampered"
        assert backend.current_user()["localId"] == "u-alice"

        backend.sign_out()
        listener.assert_called_with(None)
        backend.remove_session_listener(listener)
        backend.sign_in_directly(ALICE)
        assert listener.call_count == 2

    def test_update_user_requires_session(self) -> None:
        """update_user needs a signed-in user."""
        with pytest.raises(NoActiveSessionError):
            InMemoryIdentityBackend().update_user(email="x@example.com")

    def test_flow_call_count(self) -> None:
        """Only the flow entry points are counted."""
        backend = InMemoryIdentityBackend(default_user=ALICE)
        backend.current_user()
        backend.pending_result()
        _run(backend.exchange_token("oidc.a", "idt"))
        assert backend.flow_call_count == 2
