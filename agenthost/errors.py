"""Exception types raised across agenthost subsystems."""

from __future__ import annotations


class AgentHostError(Exception):
    """Base class for every error agenthost raises on purpose."""


class CharacterConfigError(AgentHostError):
    """A character file is missing, unreadable, or fails validation."""

    def __init__(self, path: str, reason: str) -> None:
        super().__init__(f"Error loading character from {path}: {reason}")
        self.path = path
        self.reason = reason


class AgentBringUpError(AgentHostError):
    """An agent runtime could not be constructed or initialized."""


class ModelProviderError(AgentHostError):
    """A model provider call failed or returned an unusable payload."""


class PlatformClientError(AgentHostError):
    """An optional platform client could not be started."""


class ResourceReleasedError(AgentHostError):
    """A handle was accessed after teardown released it.

    This is a programming error: released handles are never reused within the
    same process lifetime.
    """
