"""Pytest configuration and fixtures."""

# pylint: disable=redefined-outer-name

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from fedsignin.auth.config_store import ConfigStore, reset_config_store
from fedsignin.backends.memory import InMemoryIdentityBackend
from fedsignin.config import clear_settings


if TYPE_CHECKING:
    from collections.abc import Generator
    from pathlib import Path


OKTA_PROPERTIES = """\
oidc.provider.id=oidc.okta
oidc.custom.params=tenant=abc123
oidc.scopes=openid,email
"""

ALICE = {"localId": "u-alice", "email": "alice@example.com", "displayName": "Alice"}


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[None, None, None]:
    """Run every test with default settings and a fresh config store."""
    for name in (
        "FEDSIGNIN_CONFIG_FILE",
        "FEDSIGNIN_AUTH__CONFIG_PATH",
        "FEDSIGNIN_AUTH__WEB_CLIENT_ID",
        "FEDSIGNIN_TOOLKIT__API_KEY",
        "FEDSIGNIN_LOG__LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)
    # Settings files are looked up relative to the working directory.
    monkeypatch.chdir(tmp_path)
    clear_settings()
    reset_config_store()
    yield
    clear_settings()
    reset_config_store()


@pytest.fixture()
def okta_store() -> ConfigStore:
    """Config store holding a single OIDC provider."""
    return ConfigStore(
        {
            "oidc.provider.id": "oidc.okta",
            "oidc.custom.params": "tenant=abc123",
            "oidc.scopes": "openid,email",
        }
    )


@pytest.fixture()
def properties_file(tmp_path: Path) -> Path:
    """A provider configuration file on disk."""
    path = tmp_path / "config.properties"
    path.write_text(OKTA_PROPERTIES, encoding="utf-8")
    return path


@pytest.fixture()
def backend() -> InMemoryIdentityBackend:
    """In-memory backend that signs everybody in as Alice."""
    return InMemoryIdentityBackend(default_user=ALICE)
