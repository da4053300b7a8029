"""
Core data types shared across agenthost subsystems.

These live here rather than in a specific subsystem to avoid circular imports
between the character loader, the token table, and the agent runtime.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ModelProviderName(str, Enum):
    """Model providers a character may select with ``modelProvider``."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    LLAMACLOUD = "llama_cloud"
    REDPILL = "redpill"
    OPENROUTER = "openrouter"
    GROK = "grok"
    HEURIST = "heurist"
    GROQ = "groq"


@dataclass
class Memory:
    """One stored conversation message."""

    agent_id: str
    room_id: str
    user_id: str
    text: str
    role: str = "user"
    created_at: float = field(default_factory=time.time)


@dataclass
class ResponseMessage:
    """A single reply message returned by the local message API."""

    text: str
    user: str

    def to_dict(self) -> dict[str, Any]:
        return {"text": self.text, "user": self.user}
