"""Shared test fixtures."""

from __future__ import annotations

import os
from collections.abc import Iterator

import pytest

from sandboxchat.client_state.settings import get_settings
from tests.fakes import FakeAgentServer, FakeProvisioning, FakeStream


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Iterator[None]:
    """Keep host SANDBOXCHAT_* variables and .env files out of tests."""
    for key in list(os.environ):
        if key.startswith("SANDBOXCHAT_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def provisioning() -> FakeProvisioning:
    return FakeProvisioning()


@pytest.fixture
def stream() -> FakeStream:
    return FakeStream()


@pytest.fixture
def agent() -> FakeAgentServer:
    return FakeAgentServer()
