"""
Character configuration: loading, validation, and defaults.

A character file is a JSON persona definition: identity, model provider,
enabled platform clients, plugin descriptors, and a settings/secrets bag.
Files are validated with Pydantic at start-up; any invalid file is fatal so
the host never runs with a partial character list.
"""

from __future__ import annotations

import json
import uuid
from pathlib import Path
from typing import Any, Optional, Union

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from agenthost.errors import CharacterConfigError
from agenthost.types import ModelProviderName

logger = structlog.get_logger(__name__)

# Fixed namespace so the same name always yields the same agent id.
_CHARACTER_NAMESPACE = uuid.UUID("6f1c3a52-8d0e-4b7a-9c2d-5e4f3a2b1c0d")

TextOrLines = Union[str, list[str]]


def string_to_uuid(value: str) -> str:
    """Derive a stable UUID string from *value*."""
    return str(uuid.uuid5(_CHARACTER_NAMESPACE, value))


class CharacterSettings(BaseModel):
    """Per-character settings; ``secrets`` is consulted before process settings."""

    model_config = ConfigDict(extra="allow")

    secrets: dict[str, str] = Field(default_factory=dict)
    model: Optional[str] = None


class CharacterStyle(BaseModel):
    model_config = ConfigDict(extra="allow")

    all: list[str] = Field(default_factory=list)
    chat: list[str] = Field(default_factory=list)
    post: list[str] = Field(default_factory=list)


class Character(BaseModel):
    """A validated persona definition."""

    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())

    id: Optional[str] = None
    name: str
    username: Optional[str] = None
    model_provider: ModelProviderName = Field(
        ModelProviderName.OPENROUTER, alias="modelProvider"
    )
    clients: list[str] = Field(default_factory=list)
    plugins: list[str] = Field(default_factory=list)
    settings: CharacterSettings = Field(default_factory=CharacterSettings)

    system: Optional[str] = None
    bio: TextOrLines = ""
    lore: list[str] = Field(default_factory=list)
    message_examples: list[Any] = Field(default_factory=list, alias="messageExamples")
    post_examples: list[str] = Field(default_factory=list, alias="postExamples")
    topics: list[str] = Field(default_factory=list)
    adjectives: list[str] = Field(default_factory=list)
    style: CharacterStyle = Field(default_factory=CharacterStyle)

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must not be empty")
        return value

    @field_validator("model_provider", mode="before")
    @classmethod
    def normalize_provider(cls, value: object) -> object:
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @property
    def client_names(self) -> list[str]:
        return [c.strip().lower() for c in self.clients if c.strip()]

    @property
    def secrets(self) -> dict[str, str]:
        return self.settings.secrets

    def fill_defaults(self) -> None:
        """Fill a missing ``id`` (derived from ``name``) and ``username``."""
        if self.id is None:
            self.id = string_to_uuid(self.name)
        if self.username is None:
            self.username = self.name


def validate_character_config(data: Any) -> Character:
    """Validate a decoded JSON object as a Character. Raises ValidationError."""
    return Character.model_validate(data)


def default_character() -> Character:
    """The built-in character used when no character files are given."""
    return Character(
        name="Eliza",
        modelProvider=ModelProviderName.OPENROUTER,
        system="You are Eliza, a friendly assistant running on a small agent host.",
        bio=[
            "A helpful conversational agent.",
            "Keeps answers short and plain.",
        ],
        adjectives=["helpful", "concise", "curious"],
        style=CharacterStyle(all=["answer directly", "avoid filler"]),
    )


def resolve_character_paths(
    characters_arg: str,
    characters_dir: Path,
    cwd: Optional[Path] = None,
) -> list[Path]:
    """
    Split a comma-separated argument into absolute character file paths.

    Bare filenames (no directory part) resolve against *characters_dir*;
    everything else resolves against *cwd* (the process working directory
    by default).
    """
    base = cwd or Path.cwd()
    paths: list[Path] = []
    for raw in characters_arg.split(","):
        entry = raw.strip()
        if not entry:
            continue
        candidate = Path(entry)
        if candidate.name == entry:
            candidate = characters_dir / entry
        elif not candidate.is_absolute():
            candidate = base / candidate
        paths.append(candidate.resolve())
    return paths


def load_character_file(path: Path) -> Character:
    """Read and validate one character file, wrapping every failure."""
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        raise CharacterConfigError(str(path), "file not found") from None
    except (OSError, json.JSONDecodeError) as e:
        raise CharacterConfigError(str(path), str(e)) from e
    try:
        return validate_character_config(data)
    except ValidationError as e:
        raise CharacterConfigError(str(path), str(e)) from e


def load_characters(
    characters_arg: Optional[str],
    characters_dir: Path,
    cwd: Optional[Path] = None,
) -> list[Character]:
    """
    Load every character named in *characters_arg*.

    The first file that fails raises ``CharacterConfigError``; no partial list
    is ever returned. When nothing is named, the built-in default is used.
    """
    loaded: list[Character] = []
    if characters_arg:
        for path in resolve_character_paths(characters_arg, characters_dir, cwd):
            character = load_character_file(path)
            logger.info("character.loaded", name=character.name, path=str(path))
            loaded.append(character)

    if not loaded:
        logger.info("character.using_default")
        loaded.append(default_character())
    return loaded
