"""
Shared fixtures for the agenthost test suite.

Every test runs in an empty working directory with a scrubbed environment,
so no developer ``.env`` file or exported key leaks into configuration.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import pytest

from agenthost.character import Character
from agenthost.config import AgentHostConfig, get_settings
from agenthost.resources import ResourceRegistry
from agenthost.runtime.models import ModelClient
from agenthost.shutdown import ShutdownController
from agenthost.types import ModelProviderName
from agenthost.watchdog import MemoryWatchdog

_ENV_PREFIXES = ("AGENTHOST_", "TWITTER_", "SERVER_", "POST_INTERVAL_")
_ENV_SUFFIXES = ("_API_KEY",)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    for key in list(os.environ):
        if key.startswith(_ENV_PREFIXES) or key.endswith(_ENV_SUFFIXES):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.chdir(tmp_path)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


# ---------------------------------------------------------------------------
# Model client stand-in
# ---------------------------------------------------------------------------


class FakeModelClient(ModelClient):
    """Replies from a fixed script and records every call."""

    def __init__(self, replies: Optional[list[str]] = None, model: str = "fake-model") -> None:
        self.model = model
        self.replies = list(replies or ["Namaste"])
        self.calls: list[dict[str, Any]] = []
        self.closed = False

    async def complete(self, system, messages, max_tokens=512):
        self.calls.append({"system": system, "messages": list(messages), "max_tokens": max_tokens})
        if len(self.replies) > 1:
            return self.replies.pop(0)
        return self.replies[0]

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_model() -> FakeModelClient:
    return FakeModelClient()


@pytest.fixture
def model_factory(fake_model: FakeModelClient):
    """A model client factory that ignores the token and returns ``fake_model``."""
    created: list[tuple[ModelProviderName, Optional[str], Optional[str]]] = []

    def _factory(provider, token, model=None):
        created.append((provider, token, model))
        return fake_model

    _factory.created = created  # type: ignore[attr-defined]
    return _factory


# ---------------------------------------------------------------------------
# Configuration and lifecycle objects
# ---------------------------------------------------------------------------


@pytest.fixture
def config(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> AgentHostConfig:
    monkeypatch.setenv("AGENTHOST_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("AGENTHOST_CHARACTERS_DIR", str(tmp_path / "characters"))
    monkeypatch.setenv("AGENTHOST_AGENT_START_DELAY", "0")
    monkeypatch.setenv("AGENTHOST_CONSOLE_REARM_DELAY", "0")
    monkeypatch.setenv("AGENTHOST_GC_HINTS", "false")
    monkeypatch.setenv("SERVER_PORT", "0")
    return AgentHostConfig()


@pytest.fixture
def registry() -> ResourceRegistry:
    return ResourceRegistry(gc_hints=False)


@pytest.fixture
def controller(registry: ResourceRegistry) -> ShutdownController:
    return ShutdownController(registry)


class MemoryGauge:
    """Settable memory reading used as a watchdog sampler."""

    def __init__(self, mb: float = 100.0) -> None:
        self.mb = mb

    def __call__(self) -> int:
        return int(self.mb * 1024 * 1024)


@pytest.fixture
def gauge() -> MemoryGauge:
    return MemoryGauge()


@pytest.fixture
def watchdog(
    config: AgentHostConfig,
    controller: ShutdownController,
    registry: ResourceRegistry,
    gauge: MemoryGauge,
) -> MemoryWatchdog:
    return MemoryWatchdog(config.watchdog, controller, registry, sampler=gauge)


def make_character(name: str = "Norinder", **overrides: Any) -> Character:
    data: dict[str, Any] = {
        "name": name,
        "modelProvider": "openrouter",
        "settings": {"secrets": {"OPENROUTER": "sk-test"}},
        "bio": ["A calm yoga teacher."],
    }
    data.update(overrides)
    return Character.model_validate(data)


@pytest.fixture(name="make_character")
def make_character_fixture():
    return make_character
