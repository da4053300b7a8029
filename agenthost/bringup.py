"""
Agent bring-up sequencer.

Starts one agent runtime per character, strictly one after another. The
database and cache are opened lazily on the first character and memoized in
the resource registry, so every agent shares them. Platform clients are
optional: when one fails to start the agent still comes up and a warning is
logged. Anything else that fails is fatal for the whole host.
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import structlog

from agenthost.character import Character
from agenthost.config import AgentHostConfig, ProviderSettings
from agenthost.resources import ResourceRegistry
from agenthost.runtime.agent import AgentRuntime, ModelClientFactory
from agenthost.runtime.models import create_model_client
from agenthost.runtime.plugins import PlatformClientFactory, bootstrap_plugin, resolve_plugins
from agenthost.shutdown import ShutdownController
from agenthost.storage.cache import CacheManager, DbCacheAdapter
from agenthost.storage.sqlite import SqliteDatabaseAdapter
from agenthost.tokens import get_token_for_provider
from agenthost.watchdog import MemoryWatchdog

logger = structlog.get_logger(__name__)

# Always served by the Direct Client; never started as a platform client.
_BUILTIN_CLIENTS = frozenset({"direct"})


class AgentSequencer:
    """Brings agents up one at a time and hands them to the Direct Client."""

    def __init__(
        self,
        config: AgentHostConfig,
        registry: ResourceRegistry,
        controller: ShutdownController,
        watchdog: MemoryWatchdog,
        platform_clients: Optional[dict[str, PlatformClientFactory]] = None,
        model_client_factory: ModelClientFactory = create_model_client,
        settings: Optional[ProviderSettings] = None,
    ) -> None:
        self._config = config
        self._registry = registry
        self._controller = controller
        self._watchdog = watchdog
        self._platform_clients = platform_clients or {}
        self._model_client_factory = model_client_factory
        self._settings = settings

    async def start_agents(self, characters: list[Character], direct_client: Any) -> int:
        """Start every character in order. Returns how many agents came up."""
        started = 0
        for character in characters:
            self._watchdog.check()
            if self._controller.is_shutting_down:
                logger.info(
                    "bringup.stopped",
                    reason=self._controller.reason,
                    started=started,
                    remaining=len(characters) - started,
                )
                break
            await self.start_agent(character, direct_client)
            started += 1
            self._watchdog.gc_hint()
            await self._pause()
        logger.info("bringup.complete", agents=started)
        return started

    async def _pause(self) -> None:
        """Inter-agent delay that ends early when shutdown begins."""
        delay = self._config.bringup.agent_start_delay
        if delay <= 0:
            return
        try:
            await asyncio.wait_for(self._controller.wait(), timeout=delay)
        except asyncio.TimeoutError:
            pass

    async def start_agent(self, character: Character, direct_client: Any) -> AgentRuntime:
        try:
            character.fill_defaults()
            token = get_token_for_provider(character.model_provider, character, self._settings)
            db = await self._get_database()
            cache = self._get_cache(db, character)
            runtime = self.create_agent(character, db, token, cache)
            await runtime.initialize()
        except Exception as e:
            logger.error(
                "bringup.agent_failed",
                character=character.name,
                error=str(e),
                exc_info=True,
            )
            raise

        await self.initialize_clients(character, runtime)

        try:
            direct_client.register_agent(runtime)
        except Exception as e:
            logger.error(
                "bringup.agent_failed",
                character=character.name,
                error=str(e),
                exc_info=True,
            )
            raise
        logger.info(
            "bringup.agent_started",
            character=character.name,
            agent_id=runtime.agent_id,
            provider=character.model_provider.value,
        )
        return runtime

    def create_agent(
        self,
        character: Character,
        db: SqliteDatabaseAdapter,
        token: Optional[str],
        cache: CacheManager,
    ) -> AgentRuntime:
        logger.info("bringup.creating_runtime", character=character.name)
        plugins = [bootstrap_plugin, *resolve_plugins(character.plugins)]
        return AgentRuntime(
            database_adapter=db,
            token=token,
            model_provider=character.model_provider,
            character=character,
            plugins=plugins,
            evaluators=[],
            providers=[],
            actions=[],
            services=[],
            managers=[],
            cache_manager=cache,
            model_client_factory=self._model_client_factory,
        )

    async def initialize_clients(self, character: Character, runtime: AgentRuntime) -> list[Any]:
        """Start the character's platform clients. Failures only degrade the agent."""
        factories: list[PlatformClientFactory] = []
        for name in character.client_names:
            if name in _BUILTIN_CLIENTS:
                continue
            factory = self._platform_clients.get(name)
            if factory is None:
                logger.warning(
                    "bringup.clients_degraded",
                    character=character.name,
                    client=name,
                    error="unknown client",
                )
                continue
            factories.append(factory)
        for plugin in runtime.plugins:
            factories.extend(plugin.clients)

        handles: list[Any] = []
        for factory in factories:
            try:
                handle = await factory.start(runtime)
            except Exception as e:
                logger.warning(
                    "bringup.clients_degraded",
                    character=character.name,
                    client=getattr(factory, "name", repr(factory)),
                    error=str(e),
                )
                continue
            if handle is not None:
                self._registry.track(handle)
                handles.append(handle)
        return handles

    # ------------------------------------------------------------------
    # Memoized shared handles
    # ------------------------------------------------------------------

    async def _get_database(self) -> SqliteDatabaseAdapter:
        db = self._registry.database
        if db is None:
            db = SqliteDatabaseAdapter(self._config.bringup.database_path)
            self._registry.database = db
        await db.init()
        return db

    def _get_cache(self, db: SqliteDatabaseAdapter, character: Character) -> CacheManager:
        cache = self._registry.cache
        if cache is None:
            assert character.id is not None
            cache = CacheManager(DbCacheAdapter(db, character.id))
            self._registry.cache = cache
            logger.debug("bringup.cache_created", scope=character.id)
        return cache
