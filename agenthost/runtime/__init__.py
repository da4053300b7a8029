"""Agent runtime: model clients, plugins, and the per-character runtime."""

from agenthost.runtime.agent import AgentRuntime
from agenthost.runtime.models import (
    AnthropicModelClient,
    ModelClient,
    OpenAICompatibleModelClient,
    create_model_client,
)
from agenthost.runtime.plugins import Plugin, bootstrap_plugin, load_plugin, resolve_plugins

__all__ = [
    "AgentRuntime",
    "AnthropicModelClient",
    "ModelClient",
    "OpenAICompatibleModelClient",
    "Plugin",
    "bootstrap_plugin",
    "create_model_client",
    "load_plugin",
    "resolve_plugins",
]
