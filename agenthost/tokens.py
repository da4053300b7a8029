"""
Provider token resolution.

The lookup policy is data: each model provider maps to an ordered chain of
(source, key) pairs, evaluated first-match-wins. A character's own secrets
bag and the process-wide settings are the only two sources. Empty values
never match, so a blank secret falls through to the next entry.
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple, Optional

from agenthost.character import Character
from agenthost.config import ProviderSettings, get_settings
from agenthost.types import ModelProviderName


class Source(str, Enum):
    CHARACTER = "character"
    SETTINGS = "settings"


class TokenSource(NamedTuple):
    source: Source
    key: str


def _chain(*keys: str) -> tuple[TokenSource, ...]:
    """Character secret then process setting for each key, in order."""
    out: list[TokenSource] = []
    for key in keys:
        out.append(TokenSource(Source.CHARACTER, key))
        out.append(TokenSource(Source.SETTINGS, key))
    return tuple(out)


PROVIDER_TOKEN_SOURCES: dict[ModelProviderName, tuple[TokenSource, ...]] = {
    ModelProviderName.OPENAI: _chain("OPENAI_API_KEY"),
    ModelProviderName.LLAMACLOUD: _chain(
        "LLAMACLOUD_API_KEY",
        "TOGETHER_API_KEY",
        "XAI_API_KEY",
        "OPENAI_API_KEY",
    ),
    ModelProviderName.ANTHROPIC: (
        TokenSource(Source.CHARACTER, "ANTHROPIC_API_KEY"),
        TokenSource(Source.CHARACTER, "CLAUDE_API_KEY"),
        TokenSource(Source.SETTINGS, "ANTHROPIC_API_KEY"),
        TokenSource(Source.SETTINGS, "CLAUDE_API_KEY"),
    ),
    ModelProviderName.REDPILL: _chain("REDPILL_API_KEY"),
    # Character secrets historically use the bare "OPENROUTER" key.
    ModelProviderName.OPENROUTER: (
        TokenSource(Source.CHARACTER, "OPENROUTER"),
        TokenSource(Source.SETTINGS, "OPENROUTER_API_KEY"),
    ),
    ModelProviderName.GROK: _chain("GROK_API_KEY"),
    ModelProviderName.HEURIST: _chain("HEURIST_API_KEY"),
    ModelProviderName.GROQ: _chain("GROQ_API_KEY"),
}


def get_token_for_provider(
    provider: ModelProviderName,
    character: Character,
    settings: Optional[ProviderSettings] = None,
) -> Optional[str]:
    """Resolve the API token for *provider*, or None when nothing matches."""
    settings = settings or get_settings()
    for entry in PROVIDER_TOKEN_SOURCES.get(provider, ()):
        if entry.source is Source.CHARACTER:
            value = character.secrets.get(entry.key)
        else:
            value = settings.get(entry.key)
        if value:
            return value
    return None
