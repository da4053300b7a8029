"""
Agent runtime: one character bound to storage, cache, and a model client.

The supervisor only constructs a runtime and awaits ``initialize()``; after
registration the Direct Client owns it and drives ``process_message()``.
Conversation memory is kept per room in the shared database so a restart
resumes where the previous process stopped.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

import structlog

from agenthost.character import Character
from agenthost.errors import AgentBringUpError
from agenthost.runtime.models import ModelClient, create_model_client
from agenthost.runtime.plugins import Plugin
from agenthost.storage.cache import CacheManager
from agenthost.storage.sqlite import SqliteDatabaseAdapter
from agenthost.types import Memory, ModelProviderName, ResponseMessage

logger = structlog.get_logger(__name__)

ModelClientFactory = Callable[[ModelProviderName, Optional[str], Optional[str]], ModelClient]

_RECENT_MEMORY_COUNT = 20


def _as_lines(value: str | list[str]) -> list[str]:
    if isinstance(value, str):
        return [value] if value.strip() else []
    return [v for v in value if v.strip()]


class AgentRuntime:
    """Executes one persona's conversational behavior."""

    def __init__(
        self,
        *,
        database_adapter: SqliteDatabaseAdapter,
        token: Optional[str],
        model_provider: ModelProviderName,
        character: Character,
        plugins: list[Plugin],
        evaluators: list[Any],
        providers: list[Any],
        actions: list[Any],
        services: list[Any],
        managers: list[Any],
        cache_manager: CacheManager,
        model_client_factory: ModelClientFactory = create_model_client,
    ) -> None:
        if character.id is None:
            raise AgentBringUpError(f"Character {character.name!r} has no id")
        self.agent_id: str = character.id
        self.character = character
        self.database_adapter = database_adapter
        self.cache_manager = cache_manager
        self.model_provider = model_provider
        self.token = token
        self.plugins = plugins
        self.evaluators = evaluators
        self.providers = providers
        self.actions = list(actions)
        for plugin in plugins:
            self.actions.extend(plugin.actions)
        self.services = services
        self.managers = managers
        self._model_client_factory = model_client_factory
        self._model: Optional[ModelClient] = None

    @property
    def initialized(self) -> bool:
        return self._model is not None

    async def initialize(self) -> None:
        """Create the agent account and the model client. Raises on misconfiguration."""
        self.database_adapter.ensure_account(
            self.agent_id, self.character.name, self.character.username
        )
        self._model = self._model_client_factory(
            self.model_provider,
            self.token,
            self.character.settings.model,
        )
        logger.info(
            "runtime.initialized",
            agent=self.character.name,
            provider=self.model_provider.value,
            plugins=[p.name for p in self.plugins],
        )

    async def shutdown(self) -> None:
        if self._model is not None:
            await self._model.close()
            self._model = None

    # ------------------------------------------------------------------
    # Conversation
    # ------------------------------------------------------------------

    def compose_system_prompt(self) -> str:
        c = self.character
        sections: list[str] = []
        sections.append(c.system or f"You are {c.name}.")
        bio = _as_lines(c.bio)
        if bio:
            sections.append("About you:\n" + "\n".join(f"- {line}" for line in bio))
        if c.lore:
            sections.append("Background:\n" + "\n".join(f"- {line}" for line in c.lore))
        if c.adjectives:
            sections.append("You are " + ", ".join(c.adjectives) + ".")
        style = [*c.style.all, *c.style.chat]
        if style:
            sections.append("Style:\n" + "\n".join(f"- {line}" for line in style))
        return "\n\n".join(sections)

    def room_id_for(self, user_id: str) -> str:
        return f"{self.agent_id}:{user_id}"

    async def process_message(
        self,
        text: str,
        user_id: str,
        user_name: str,
        room_id: Optional[str] = None,
    ) -> list[ResponseMessage]:
        """Store the user message, generate a reply, store it, and return it."""
        model = self._require_model()
        room = room_id or self.room_id_for(user_id)
        self.database_adapter.create_memory(
            Memory(agent_id=self.agent_id, room_id=room, user_id=user_id, text=text)
        )
        history = self.database_adapter.get_memories(
            self.agent_id, room, count=_RECENT_MEMORY_COUNT
        )
        messages = [
            {"role": "assistant" if m.role == "assistant" else "user", "content": m.text}
            for m in history
        ]
        reply = await model.complete(self.compose_system_prompt(), messages)
        self.database_adapter.create_memory(
            Memory(
                agent_id=self.agent_id,
                room_id=room,
                user_id=self.agent_id,
                text=reply,
                role="assistant",
            )
        )
        logger.debug("runtime.replied", agent=self.character.name, user=user_name)
        return [ResponseMessage(text=reply, user=self.character.name)]

    async def generate_post(self) -> str:
        """Write one short standalone social post in the character's voice."""
        model = self._require_model()
        c = self.character
        examples = "\n".join(f"- {p}" for p in c.post_examples[:5])
        topics = ", ".join(c.topics[:5])
        instruction = "Write one short social media post (under 280 characters)."
        if topics:
            instruction += f" Topics you care about: {topics}."
        if examples:
            instruction += f"\nPosts you have written before:\n{examples}"
        instruction += "\nReply with the post text only."
        system = self.compose_system_prompt()
        post_style = c.style.post
        if post_style:
            system += "\n\nPost style:\n" + "\n".join(f"- {line}" for line in post_style)
        text = await model.complete(system, [{"role": "user", "content": instruction}], 200)
        return text.strip().strip('"')[:280]

    def _require_model(self) -> ModelClient:
        if self._model is None:
            raise RuntimeError("AgentRuntime is not initialized. Call initialize() first.")
        return self._model
