"""
Interactive console loop.

Reads one line at a time from stdin and sends it to the first agent through
the Direct Client's HTTP endpoint, the same way any other local caller would.
The blocking ``input()`` call runs on a worker thread and is raced against
the shutdown event, so a signal never waits on the terminal.
"""

from __future__ import annotations

import asyncio
import threading
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx
import structlog
from rich.console import Console

from agenthost.config import ConsoleConfig, ServerConfig
from agenthost.resources import ResourceRegistry
from agenthost.shutdown import ShutdownController
from agenthost.watchdog import MemoryWatchdog

logger = structlog.get_logger(__name__)

PROMPT = "You: "
EXIT_COMMAND = "exit"


def _read_line_blocking(prompt: str = "") -> Optional[str]:
    try:
        return input(prompt)
    except EOFError:
        return None


async def _run_blocking_call(fn: Callable[[], Any]) -> Any:
    """Run *fn* on a daemon thread so an abandoned read never blocks exit."""
    loop = asyncio.get_running_loop()
    done = asyncio.Event()
    box: dict[str, Any] = {}

    def _invoke() -> None:
        try:
            box["result"] = fn()
        except BaseException as exc:
            box["error"] = exc
        finally:
            try:
                loop.call_soon_threadsafe(done.set)
            except RuntimeError:
                # Loop already closed; nobody is waiting for this read.
                pass

    threading.Thread(target=_invoke, daemon=True).start()
    await done.wait()
    if "error" in box:
        raise box["error"]
    return box.get("result")


class ConsoleLoop:
    """Request/response loop between the terminal and one agent."""

    def __init__(
        self,
        config: ConsoleConfig,
        server: ServerConfig,
        controller: ShutdownController,
        watchdog: MemoryWatchdog,
        registry: ResourceRegistry,
        agent_id: str = "Agent",
        http_client: Optional[httpx.AsyncClient] = None,
        read_line: Callable[[str], Optional[str]] = _read_line_blocking,
        console: Optional[Console] = None,
    ) -> None:
        self._config = config
        self._server = server
        self._controller = controller
        self._watchdog = watchdog
        self._registry = registry
        self.agent_id = agent_id
        self._http_client = http_client
        self._read_line = read_line
        self._console = console or Console(markup=False, highlight=False)
        self._closed = asyncio.Event()

    @property
    def url(self) -> str:
        segment = quote(self.agent_id, safe="")
        return f"{self._server.base_url}/{segment}/message"

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def close(self) -> None:
        """Abandon any pending read. Called by teardown."""
        self._closed.set()

    async def run(self) -> None:
        if self._controller.is_shutting_down:
            return
        self._registry.console_input = self
        owns_client = self._http_client is None
        client = self._http_client or httpx.AsyncClient(
            timeout=self._config.http_timeout, trust_env=False
        )
        logger.info("console.started", agent=self.agent_id, url=self.url)
        try:
            while not self._controller.is_shutting_down and not self.closed:
                line = await self._read_input()
                if line is None:
                    if not self._controller.is_shutting_down and not self.closed:
                        logger.info("console.input_closed")
                    break
                text = line.strip()
                if not text:
                    continue
                if text.lower() == EXIT_COMMAND:
                    self._controller.request_shutdown("console_exit", 0)
                    break
                await self.round_trip(client, text)
                self._watchdog.gc_hint()
                await asyncio.sleep(self._config.rearm_delay)
        finally:
            if owns_client:
                await client.aclose()
            logger.info("console.stopped")

    async def _read_input(self) -> Optional[str]:
        """One pending read at a time; None on EOF, shutdown or close."""
        read_task = asyncio.create_task(
            _run_blocking_call(lambda: self._read_line(PROMPT)),
            name="console-read-input",
        )
        shutdown_wait = asyncio.create_task(self._controller.wait(), name="console-shutdown-wait")
        closed_wait = asyncio.create_task(self._closed.wait(), name="console-closed-wait")
        try:
            done, _ = await asyncio.wait(
                {read_task, shutdown_wait, closed_wait},
                return_when=asyncio.FIRST_COMPLETED,
            )
            if read_task not in done:
                return None
            return read_task.result()
        finally:
            for task in (read_task, shutdown_wait, closed_wait):
                if not task.done():
                    task.cancel()
            await asyncio.gather(read_task, shutdown_wait, closed_wait, return_exceptions=True)

    async def round_trip(self, client: httpx.AsyncClient, text: str) -> list[str]:
        """POST one message and print each reply. Returns the printed reply texts."""
        self._watchdog.check()
        if self._controller.is_shutting_down:
            return []

        payload = {"text": text, "userId": "user", "userName": "User"}
        request = client.build_request("POST", self.url, json=payload)
        try:
            response = await client.send(request, stream=True)
        except httpx.HTTPError as e:
            logger.error("console.transport_error", url=self.url, error=str(e))
            self._console.print(f"Error: could not reach {self.agent_id} ({e})")
            return []
        except Exception as e:
            logger.error("console.round_trip_failed", url=self.url, error=str(e), exc_info=True)
            self._console.print(f"Error: message to {self.agent_id} failed ({e})")
            return []

        try:
            try:
                await response.aread()
            except httpx.HTTPError as e:
                logger.error("console.transport_error", url=self.url, error=str(e))
                return []
            except Exception as e:
                logger.error("console.round_trip_failed", url=self.url, error=str(e), exc_info=True)
                return []
            if not response.is_success:
                logger.error(
                    "console.request_failed",
                    status=response.status_code,
                    agent=self.agent_id,
                )
                self._console.print(f"Error: request failed with status {response.status_code}")
                return []
            try:
                messages = response.json()
            except ValueError as e:
                logger.error("console.invalid_response", error=str(e))
                return []
            replies: list[str] = []
            for message in messages if isinstance(messages, list) else []:
                reply = str(message.get("text", "")) if isinstance(message, dict) else ""
                self._console.print(f"{self.agent_id}: {reply}")
                replies.append(reply)
            return replies
        finally:
            await response.aclose()
