"""
Process supervisor.

The context object every lifecycle component shares: configuration, the
resource registry, the shutdown controller (which owns the shutdown flag)
and the memory watchdog. ``run()`` wires them together and returns the
process exit code once teardown has finished.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Optional

import structlog
from rich.console import Console

from agenthost.bringup import AgentSequencer
from agenthost.character import Character
from agenthost.clients import build_platform_clients, start_direct_client
from agenthost.config import AgentHostConfig, ServerConfig
from agenthost.console import ConsoleLoop
from agenthost.resources import ResourceRegistry
from agenthost.runtime.agent import ModelClientFactory
from agenthost.runtime.models import create_model_client
from agenthost.runtime.plugins import PlatformClientFactory
from agenthost.shutdown import ShutdownController
from agenthost.watchdog import MemoryWatchdog, read_process_memory

logger = structlog.get_logger(__name__)

DirectClientStarter = Callable[[ServerConfig], Awaitable[Any]]


class Supervisor:
    """Brings agents up, runs the console, and tears everything down once."""

    def __init__(
        self,
        config: AgentHostConfig,
        characters: list[Character],
        *,
        platform_clients: Optional[dict[str, PlatformClientFactory]] = None,
        model_client_factory: ModelClientFactory = create_model_client,
        memory_sampler: Callable[[], int] = read_process_memory,
        direct_client_starter: DirectClientStarter = start_direct_client,
        read_line: Optional[Callable[[str], Optional[str]]] = None,
        console_output: Optional[Console] = None,
    ) -> None:
        self.config = config
        self.characters = characters
        self.registry = ResourceRegistry(gc_hints=config.watchdog.gc_hints)
        self.controller = ShutdownController(self.registry)
        self.watchdog = MemoryWatchdog(
            config.watchdog, self.controller, self.registry, sampler=memory_sampler
        )
        self.sequencer = AgentSequencer(
            config,
            self.registry,
            self.controller,
            self.watchdog,
            platform_clients=(
                platform_clients if platform_clients is not None else build_platform_clients(config)
            ),
            model_client_factory=model_client_factory,
        )
        console_kwargs: dict[str, Any] = {"console": console_output}
        if read_line is not None:
            console_kwargs["read_line"] = read_line
        self.console = ConsoleLoop(
            config.console,
            config.server,
            self.controller,
            self.watchdog,
            self.registry,
            agent_id=self.console_agent_id,
            **console_kwargs,
        )
        self._direct_client_starter = direct_client_starter

    @property
    def console_agent_id(self) -> str:
        if self.characters and self.characters[0].name:
            return self.characters[0].name
        return "Agent"

    @property
    def shutting_down(self) -> bool:
        return self.controller.is_shutting_down

    async def run(self) -> int:
        loop = asyncio.get_running_loop()
        self.controller.install_signal_handlers(loop)
        self.controller.install_exception_hooks(loop)
        logger.info("supervisor.starting", config=repr(self.config), agents=len(self.characters))

        bringup_task = asyncio.create_task(self._bring_up(), name="agent-bringup")
        try:
            self.watchdog.start()
            await self.controller.wait()
        finally:
            if not bringup_task.done():
                bringup_task.cancel()
            await asyncio.gather(bringup_task, return_exceptions=True)
            exit_code = await self.controller.shutdown()
            self.controller.remove_signal_handlers(loop)
        return exit_code

    async def _bring_up(self) -> None:
        try:
            direct_client = await self._direct_client_starter(self.config.server)
            self.registry.direct_client = direct_client
            bound = getattr(direct_client, "port", None)
            if isinstance(bound, int) and bound != self.config.server.port:
                # Ephemeral port: the console must follow the bound one.
                self.config.server.port = bound
            await self.sequencer.start_agents(self.characters, direct_client)
        except Exception as e:
            logger.error("supervisor.startup_failed", error=str(e))
            self.controller.request_shutdown("startup_failed", 1)
            return

        if self.shutting_down:
            return
        if not self.config.console.enabled:
            logger.info("supervisor.console_disabled")
            return
        console_task = asyncio.create_task(self.console.run(), name="console-loop")
        self.registry.track(console_task)
        console_task.add_done_callback(self._on_console_task_done)

    def _on_console_task_done(self, task: asyncio.Task[None]) -> None:
        """A crashed console is an unhandled error: shut down with status 1."""
        if task.cancelled():
            return
        exc = task.exception()
        if exc is None:
            return
        logger.error("supervisor.console_failed", error=str(exc), exc_info=exc)
        self.controller.request_shutdown("console_failed", 1)
