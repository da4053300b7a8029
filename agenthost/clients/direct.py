"""
Direct Client: the local HTTP message endpoint.

aiohttp server that routes messages to registered agent runtimes. The
interactive console talks to agents only through this endpoint, exactly like
any other local caller would.

Routes:
  POST /{agent_id}/message  send ``{text, userId, userName}``, receive a JSON
                              array of ``{text, user}`` replies
  GET  /agents              list registered agents
  GET  /health              health check for the hosting platform
"""

from __future__ import annotations

import time
from typing import TYPE_CHECKING, Optional

import structlog
from aiohttp import web

if TYPE_CHECKING:
    from agenthost.config import ServerConfig
    from agenthost.runtime.agent import AgentRuntime

logger = structlog.get_logger(__name__)


class DirectClient:
    """Registry of agent runtimes plus the HTTP server that fronts them.

    Lifecycle: create → start() → register_agent(...) → stop()
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 3001) -> None:
        self._host = host
        self._port = port
        self._agents: dict[str, AgentRuntime] = {}
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None
        self._started_at: float = 0.0

    # ------------------------------------------------------------------
    # Agent registry
    # ------------------------------------------------------------------

    def register_agent(self, runtime: "AgentRuntime") -> None:
        self._agents[runtime.agent_id] = runtime
        logger.info(
            "direct_client.agent_registered",
            agent=runtime.character.name,
            agent_id=runtime.agent_id,
        )

    def unregister_agent(self, runtime: "AgentRuntime") -> None:
        self._agents.pop(runtime.agent_id, None)

    @property
    def agents(self) -> list["AgentRuntime"]:
        return list(self._agents.values())

    def find_agent(self, key: str) -> Optional["AgentRuntime"]:
        """Look an agent up by id, then by case-insensitive character name."""
        runtime = self._agents.get(key)
        if runtime is not None:
            return runtime
        lowered = key.lower()
        for candidate in self._agents.values():
            if candidate.character.name.lower() == lowered:
                return candidate
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def port(self) -> int:
        """The bound port; differs from the configured one when that was 0."""
        if self._runner is not None and self._runner.addresses:
            return int(self._runner.addresses[0][1])
        return self._port

    def build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get("/health", self._handle_health)
        app.router.add_get("/agents", self._handle_agents)
        app.router.add_post("/{agent_id}/message", self._handle_message)
        return app

    async def start(self) -> "DirectClient":
        self._runner = web.AppRunner(self.build_app(), access_log=None)
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, self._host, self._port)
        await self._site.start()
        self._started_at = time.monotonic()
        logger.info("direct_client.started", host=self._host, port=self.port)
        return self

    async def stop(self) -> None:
        if self._site is not None:
            await self._site.stop()
            self._site = None
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
        for runtime in list(self._agents.values()):
            try:
                await runtime.shutdown()
            except Exception:
                logger.exception("direct_client.agent_shutdown_failed", agent=runtime.character.name)
        self._agents.clear()
        logger.info("direct_client.stopped")

    # ------------------------------------------------------------------
    # HTTP handlers
    # ------------------------------------------------------------------

    async def _handle_health(self, request: web.Request) -> web.Response:
        uptime = time.monotonic() - self._started_at if self._started_at else 0.0
        return web.json_response(
            {"status": "ok", "uptime": round(uptime, 1), "agents": len(self._agents)}
        )

    async def _handle_agents(self, request: web.Request) -> web.Response:
        return web.json_response(
            {
                "agents": [
                    {"id": r.agent_id, "name": r.character.name, "clients": r.character.clients}
                    for r in self._agents.values()
                ]
            }
        )

    async def _handle_message(self, request: web.Request) -> web.Response:
        key = request.match_info["agent_id"]
        runtime = self.find_agent(key)
        if runtime is None:
            return web.json_response({"error": f"Agent not found: {key}"}, status=404)

        try:
            body = await request.json()
        except ValueError:
            return web.json_response({"error": "invalid JSON body"}, status=400)
        if not isinstance(body, dict):
            return web.json_response({"error": "body must be an object"}, status=400)

        text = body.get("text")
        if not isinstance(text, str) or not text.strip():
            return web.json_response({"error": "text is required"}, status=400)
        user_id = str(body.get("userId") or "user")
        user_name = str(body.get("userName") or "User")

        try:
            replies = await runtime.process_message(
                text,
                user_id=user_id,
                user_name=user_name,
                room_id=body.get("roomId"),
            )
        except Exception as e:
            logger.error(
                "direct_client.message_failed",
                agent=runtime.character.name,
                error=str(e),
                exc_info=True,
            )
            return web.json_response({"error": "agent failed to respond"}, status=500)

        return web.json_response([r.to_dict() for r in replies])


async def start_direct_client(config: "ServerConfig") -> DirectClient:
    """Create and start the local message server."""
    client = DirectClient(host=config.host, port=config.port)
    return await client.start()
