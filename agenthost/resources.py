"""
Resource registry and teardown.

Holds the process-wide handles the supervisor opens lazily (console input,
database, cache, direct client) and every cancellable timer or task started
on their behalf. ``cleanup()`` releases all of them in a fixed order and can
be called any number of times, from any number of places, concurrently.

Each handle is taken and nulled before the first await of its release step,
so a second caller always finds the slot already empty.
"""

from __future__ import annotations

import asyncio
import gc
import importlib
import inspect
from typing import Any, Protocol

import structlog

from agenthost.config import get_settings
from agenthost.errors import ResourceReleasedError

logger = structlog.get_logger(__name__)


class Cancellable(Protocol):
    def cancel(self) -> Any: ...


_HANDLES = ("console_input", "database", "cache", "direct_client")


class ResourceRegistry:
    """Nullable handles plus tracked timers, released exactly once."""

    def __init__(self, gc_hints: bool = True) -> None:
        self._gc_hints = gc_hints
        self._handles: dict[str, Any] = {name: None for name in _HANDLES}
        self._released: set[str] = set()
        self._tracked: list[Cancellable] = []
        self.cleanup_runs = 0

    # ------------------------------------------------------------------
    # Handle access
    # ------------------------------------------------------------------

    def _get(self, name: str) -> Any:
        if name in self._released:
            raise ResourceReleasedError(f"{name} was released during teardown")
        return self._handles[name]

    def _set(self, name: str, value: Any) -> None:
        if name in self._released:
            raise ResourceReleasedError(f"{name} was released during teardown")
        self._handles[name] = value

    @property
    def console_input(self) -> Any:
        return self._get("console_input")

    @console_input.setter
    def console_input(self, value: Any) -> None:
        self._set("console_input", value)

    @property
    def database(self) -> Any:
        return self._get("database")

    @database.setter
    def database(self, value: Any) -> None:
        self._set("database", value)

    @property
    def cache(self) -> Any:
        return self._get("cache")

    @cache.setter
    def cache(self, value: Any) -> None:
        self._set("cache", value)

    @property
    def direct_client(self) -> Any:
        return self._get("direct_client")

    @direct_client.setter
    def direct_client(self, value: Any) -> None:
        self._set("direct_client", value)

    def is_released(self, name: str) -> bool:
        return name in self._released

    @property
    def tracked(self) -> list[Cancellable]:
        return list(self._tracked)

    def track(self, handle: Cancellable) -> Cancellable:
        """Remember a timer, task or client handle so teardown cancels it."""
        self._tracked.append(handle)
        return handle

    def untrack(self, handle: Cancellable) -> None:
        try:
            self._tracked.remove(handle)
        except ValueError:
            pass

    def _take(self, name: str) -> Any:
        handle = self._handles[name]
        self._handles[name] = None
        self._released.add(name)
        return handle

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------

    async def cleanup(self) -> None:
        """Release everything in order. Safe to call repeatedly and concurrently."""
        self.cleanup_runs += 1
        steps = (
            ("console_input", self._close_console_input),
            ("database", self._close_database),
            ("cache", self._drop_cache),
            ("direct_client", self._stop_direct_client),
            ("gc", self._collect_garbage),
            ("timers", self._cancel_tracked),
            ("module_state", self._clear_module_state),
        )
        for step, action in steps:
            try:
                await action()
            except Exception as e:
                logger.error(
                    "resources.cleanup_step_failed",
                    step=step,
                    error=str(e),
                    exc_info=True,
                )
        logger.info("resources.cleanup_complete", run=self.cleanup_runs)

    async def _close_console_input(self) -> None:
        handle = self._take("console_input")
        if handle is None:
            return
        result = handle.close()
        if inspect.isawaitable(result):
            await result
        logger.debug("resources.console_input_closed")

    async def _close_database(self) -> None:
        db = self._take("database")
        if db is None:
            return
        result = db.close()
        if inspect.isawaitable(result):
            await result
        logger.info("resources.database_closed")

    async def _drop_cache(self) -> None:
        if self._take("cache") is not None:
            logger.debug("resources.cache_dropped")

    async def _stop_direct_client(self) -> None:
        client = self._take("direct_client")
        if client is None:
            return
        await client.stop()
        logger.info("resources.direct_client_stopped")

    async def _collect_garbage(self) -> None:
        if self._gc_hints:
            gc.collect()

    async def _cancel_tracked(self) -> None:
        tracked, self._tracked = self._tracked, []
        current = asyncio.current_task()
        pending: list[asyncio.Future[Any]] = []
        for handle in tracked:
            try:
                handle.cancel()
            except Exception as e:
                logger.warning("resources.cancel_failed", handle=repr(handle), error=str(e))
                continue
            if isinstance(handle, asyncio.Future) and handle is not current:
                pending.append(handle)
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        if tracked:
            logger.debug("resources.timers_cancelled", count=len(tracked))

    async def _clear_module_state(self) -> None:
        get_settings.cache_clear()
        importlib.invalidate_caches()
