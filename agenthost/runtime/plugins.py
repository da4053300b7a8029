"""Plugins: named bundles of actions and platform clients an agent loads."""

from __future__ import annotations

import importlib
from dataclasses import dataclass, field
from typing import Any, Protocol

from agenthost.errors import AgentBringUpError


class PlatformClientFactory(Protocol):
    """Anything with ``start(runtime)`` returning a cancellable handle."""

    name: str

    async def start(self, runtime: Any) -> Any: ...


@dataclass
class Plugin:
    name: str
    description: str = ""
    actions: list[Any] = field(default_factory=list)
    clients: list[PlatformClientFactory] = field(default_factory=list)


bootstrap_plugin = Plugin(
    name="bootstrap",
    description="Conversation basics every agent loads: reply to direct messages.",
)


def load_plugin(descriptor: str) -> Plugin:
    """Import a ``"package.module:attribute"`` descriptor and return the Plugin."""
    module_name, _, attr = descriptor.partition(":")
    if not module_name or not attr:
        raise AgentBringUpError(
            f"Invalid plugin descriptor {descriptor!r}; expected 'module:attribute'"
        )
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise AgentBringUpError(f"Cannot import plugin module {module_name!r}: {e}") from e
    plugin = getattr(module, attr, None)
    if not isinstance(plugin, Plugin):
        raise AgentBringUpError(f"{descriptor!r} does not name a Plugin")
    return plugin


def resolve_plugins(descriptors: list[str]) -> list[Plugin]:
    return [load_plugin(d) for d in descriptors]
