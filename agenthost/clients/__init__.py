"""
Clients that front agent runtimes.

The Direct Client is always started; platform clients are started per
character when its ``clients`` list names them.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from agenthost.clients.direct import DirectClient, start_direct_client
from agenthost.clients.twitter import TwitterClientInterface, TwitterPoster

if TYPE_CHECKING:
    from agenthost.config import AgentHostConfig
    from agenthost.runtime.plugins import PlatformClientFactory


def build_platform_clients(config: "AgentHostConfig") -> dict[str, "PlatformClientFactory"]:
    """Platform client factories keyed by the lowercase name characters use."""
    return {"twitter": TwitterClientInterface(config.twitter)}


__all__ = [
    "DirectClient",
    "TwitterClientInterface",
    "TwitterPoster",
    "build_platform_clients",
    "start_direct_client",
]
