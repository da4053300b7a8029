"""
Memory watchdog.

Samples the process resident set on a fixed period and reacts to two
thresholds: above the warning level it logs and asks the collector for a
pass, above the critical level it asks the shutdown controller to tear the
process down with exit status 1. ``check()`` is also called synchronously
before each agent bring-up step and before each console round-trip.

No psutil dependency. Reads /proc/self/statm where available, otherwise
falls back to the peak RSS reported by ``resource.getrusage``.
"""

from __future__ import annotations

import asyncio
import gc
import os
import sys
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional

import structlog

from agenthost.config import WatchdogConfig
from agenthost.resources import ResourceRegistry
from agenthost.shutdown import ShutdownController

logger = structlog.get_logger(__name__)

_MB = 1024 * 1024


class MemoryLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass(frozen=True)
class MemorySample:
    timestamp: float
    heap_bytes: int

    @property
    def heap_mb(self) -> float:
        return self.heap_bytes / _MB


def read_process_memory() -> int:
    """Resident memory of this process in bytes; 0 when it cannot be read."""
    try:
        with open("/proc/self/statm") as f:
            resident_pages = int(f.read().split()[1])
        return resident_pages * os.sysconf("SC_PAGE_SIZE")
    except (FileNotFoundError, OSError, ValueError, IndexError):
        pass
    try:
        import resource

        peak = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    except (ImportError, OSError):
        return 0
    # macOS reports bytes, Linux reports KiB.
    return int(peak) if sys.platform == "darwin" else int(peak) * 1024


class MemoryWatchdog:
    """Periodic memory sampling with warning and critical reactions."""

    def __init__(
        self,
        config: WatchdogConfig,
        controller: ShutdownController,
        registry: ResourceRegistry,
        sampler: Callable[[], int] = read_process_memory,
    ) -> None:
        self._config = config
        self._controller = controller
        self._registry = registry
        self._sampler = sampler
        self._task: asyncio.Task[None] | None = None
        self.last_sample: Optional[MemorySample] = None

    def sample(self) -> MemorySample:
        return MemorySample(timestamp=time.time(), heap_bytes=int(self._sampler()))

    def classify(self, sample: MemorySample) -> MemoryLevel:
        if sample.heap_bytes >= self._config.critical_bytes:
            return MemoryLevel.CRITICAL
        if sample.heap_bytes >= self._config.warning_bytes:
            return MemoryLevel.WARNING
        return MemoryLevel.NORMAL

    def gc_hint(self) -> None:
        """Advisory collector pass; a no-op when gc hints are disabled."""
        if self._config.gc_hints:
            collected = gc.collect()
            logger.debug("watchdog.gc_hint", collected=collected)

    def check(self) -> Optional[MemoryLevel]:
        """Sample once and react. Returns None when shutdown already began."""
        if self._controller.is_shutting_down:
            return None
        sample = self.sample()
        self.last_sample = sample
        level = self.classify(sample)
        if level is MemoryLevel.WARNING:
            logger.warning(
                "watchdog.memory_high",
                heap_mb=round(sample.heap_mb, 1),
                warning_mb=self._config.warning_mb,
            )
            self.gc_hint()
        elif level is MemoryLevel.CRITICAL:
            logger.error(
                "watchdog.memory_critical",
                heap_mb=round(sample.heap_mb, 1),
                critical_mb=self._config.critical_mb,
            )
            self._controller.request_shutdown("memory_critical", 1)
        return level

    # ------------------------------------------------------------------
    # Periodic task
    # ------------------------------------------------------------------

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            logger.warning("watchdog.already_running")
            return
        self._task = asyncio.create_task(self._loop(), name="memory-watchdog")
        self._registry.track(self._task)
        logger.info(
            "watchdog.started",
            interval=self._config.check_interval,
            warning_mb=self._config.warning_mb,
            critical_mb=self._config.critical_mb,
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        self._registry.untrack(task)
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _loop(self) -> None:
        while not self._controller.is_shutting_down:
            await asyncio.sleep(self._config.check_interval)
            try:
                self.check()
            except Exception as e:
                logger.error("watchdog.check_failed", error=str(e), exc_info=True)
