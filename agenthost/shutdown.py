"""
Shutdown controller.

Every way the host can end funnels through ``request_shutdown(reason,
exit_code)``: signals, the console ``exit`` command, a critical memory
reading, a failed bring-up, and uncaught errors on either side of the event
loop. The first request wins and fixes the exit code; later requests are
logged and ignored. ``shutdown()`` then runs the registry teardown once.

States only move forward: RUNNING -> SHUTTING_DOWN -> TERMINATED.
"""

from __future__ import annotations

import asyncio
import signal
import sys
from enum import Enum
from types import TracebackType
from typing import Any, Optional

import structlog

from agenthost.resources import ResourceRegistry

logger = structlog.get_logger(__name__)


class ShutdownState(str, Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class ShutdownController:
    """Owns the process shutdown flag and the one-way lifecycle state."""

    def __init__(self, registry: ResourceRegistry) -> None:
        self._registry = registry
        self._state = ShutdownState.RUNNING
        self._event = asyncio.Event()
        self.reason: Optional[str] = None
        self.exit_code = 0
        self._previous_excepthook: Any = None

    @property
    def state(self) -> ShutdownState:
        return self._state

    @property
    def is_shutting_down(self) -> bool:
        return self._state is not ShutdownState.RUNNING

    def request_shutdown(self, reason: str, exit_code: int = 0) -> bool:
        """Begin shutting down. Returns False when a shutdown was already requested."""
        if self._state is not ShutdownState.RUNNING:
            logger.debug(
                "shutdown.already_requested",
                reason=reason,
                first_reason=self.reason,
            )
            return False
        self._state = ShutdownState.SHUTTING_DOWN
        self.reason = reason
        self.exit_code = exit_code
        self._event.set()
        logger.info("shutdown.requested", reason=reason, exit_code=exit_code)
        return True

    async def wait(self) -> None:
        await self._event.wait()

    async def shutdown(self) -> int:
        """Run teardown once and return the exit code. Later calls only return it."""
        if self._state is ShutdownState.TERMINATED:
            return self.exit_code
        if self._state is ShutdownState.RUNNING:
            self.request_shutdown("shutdown", 0)
        await self._registry.cleanup()
        self._state = ShutdownState.TERMINATED
        self._restore_excepthook()
        logger.info("shutdown.complete", reason=self.reason, exit_code=self.exit_code)
        return self.exit_code

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig.name.lower(), 0)
            except (NotImplementedError, RuntimeError):
                # Windows event loops do not support add_signal_handler.
                logger.debug("shutdown.signal_handler_unavailable", signal=sig.name)

    def remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.remove_signal_handler(sig)
            except (NotImplementedError, RuntimeError):
                pass

    def install_exception_hooks(self, loop: asyncio.AbstractEventLoop) -> None:
        """Route uncaught errors from plain code and from the loop into shutdown."""
        self._previous_excepthook = sys.excepthook
        sys.excepthook = self._handle_uncaught_exception
        loop.set_exception_handler(self._handle_loop_exception)

    def _restore_excepthook(self) -> None:
        if self._previous_excepthook is not None:
            sys.excepthook = self._previous_excepthook
            self._previous_excepthook = None

    def _handle_uncaught_exception(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: Optional[TracebackType],
    ) -> None:
        logger.critical(
            "shutdown.uncaught_exception",
            error=str(exc),
            exc_info=(exc_type, exc, tb),
        )
        self.request_shutdown("uncaught_exception", 1)

    def _handle_loop_exception(
        self,
        loop: asyncio.AbstractEventLoop,
        context: dict[str, Any],
    ) -> None:
        exc = context.get("exception")
        logger.critical(
            "shutdown.unhandled_async_error",
            message=context.get("message"),
            error=str(exc) if exc is not None else None,
            exc_info=exc,
        )
        self.request_shutdown("unhandled_async_error", 1)
