"""
Twitter (X) platform client.

Posts text generated by the agent runtime on a randomized interval through
the X v2 HTTP API. Starting the client verifies the credentials once; a
failure there raises ``PlatformClientError``, which bring-up treats as a
degraded (not fatal) agent.
"""

from __future__ import annotations

import asyncio
import random
import time
from typing import TYPE_CHECKING, Any, Optional

import httpx
import structlog

from agenthost.errors import PlatformClientError

if TYPE_CHECKING:
    from agenthost.config import TwitterConfig
    from agenthost.runtime.agent import AgentRuntime

logger = structlog.get_logger(__name__)


class TwitterPoster:
    """A running posting loop for one agent. ``cancel()`` stops it."""

    def __init__(
        self,
        runtime: "AgentRuntime",
        config: "TwitterConfig",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._runtime = runtime
        self._config = config
        self._transport = transport
        self._task: asyncio.Task[None] | None = None
        self.posts_sent = 0

    @property
    def cache_key(self) -> str:
        return f"twitter/{self._config.username}/last_post"

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._config.api_base,
            headers={"Authorization": f"Bearer {self._config.access_token}"},
            timeout=30.0,
            transport=self._transport,
        )

    def next_delay(self) -> float:
        """Seconds until the next post, honoring the cached last-post time."""
        interval = random.uniform(
            self._config.post_interval_min, self._config.post_interval_max
        ) * 60.0
        last = self._runtime.cache_manager.get(self.cache_key)
        if isinstance(last, dict) and isinstance(last.get("timestamp"), (int, float)):
            return max(0.0, float(last["timestamp"]) + interval - time.time())
        return interval

    def start(self) -> None:
        self._task = asyncio.create_task(
            self._loop(), name=f"twitter-poster-{self._runtime.character.name}"
        )

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def post_once(self, client: httpx.AsyncClient) -> dict[str, Any]:
        text = await self._runtime.generate_post()
        if not text:
            raise PlatformClientError("generated post was empty")
        response = await client.post("/tweets", json={"text": text})
        response.raise_for_status()
        tweet_id = (response.json().get("data") or {}).get("id")
        record = {"id": tweet_id, "timestamp": time.time(), "text": text}
        self._runtime.cache_manager.set(self.cache_key, record)
        self.posts_sent += 1
        logger.info("twitter.posted", agent=self._runtime.character.name, tweet_id=tweet_id)
        return record

    async def _loop(self) -> None:
        async with self._client() as client:
            while True:
                await asyncio.sleep(self.next_delay())
                try:
                    await self.post_once(client)
                except asyncio.CancelledError:
                    raise
                except Exception as e:
                    logger.warning(
                        "twitter.post_failed",
                        agent=self._runtime.character.name,
                        error=str(e),
                    )
                    # Avoid a hot loop when the cached timestamp keeps the delay at zero.
                    self._runtime.cache_manager.set(
                        self.cache_key, {"id": None, "timestamp": time.time(), "text": ""}
                    )


class TwitterClientInterface:
    """Factory registered under the ``twitter`` client name."""

    name = "twitter"

    def __init__(
        self,
        config: "TwitterConfig",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config
        self._transport = transport

    async def start(self, runtime: "AgentRuntime") -> TwitterPoster:
        if not self._config.username or not self._config.access_token:
            raise PlatformClientError(
                "Twitter client needs TWITTER_USERNAME and TWITTER_ACCESS_TOKEN"
            )
        poster = TwitterPoster(runtime, self._config, transport=self._transport)
        async with poster._client() as client:
            try:
                response = await client.get("/users/me")
            except httpx.HTTPError as e:
                raise PlatformClientError(f"Twitter API unreachable: {e}") from e
            if response.status_code != 200:
                raise PlatformClientError(
                    f"Twitter credential check failed with status {response.status_code}"
                )
        poster.start()
        logger.info(
            "twitter.started",
            agent=runtime.character.name,
            username=self._config.username,
        )
        return poster
