"""Process-memory governor: proactive self-restart before the host OOM-kills us.

Measures this process with ``psutil`` and walks a one-way state machine::

    NORMAL  -> WARNING     rss >= warning threshold (verbose diagnostics)
    WARNING -> NORMAL      rss back under the warning threshold
    *       -> RESTARTING  rss >= hard limit; new requests are refused
    RESTARTING -> TERMINATED   exit after the grace delay

The exit itself is a ``SIGTERM`` to our own process so uvicorn shuts down
cleanly and the platform supervisor starts a fresh instance.  Tests inject
``exit_func``.
"""

from __future__ import annotations

import asyncio
import gc
import json
import logging
import os
import signal
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

import psutil

from eol_scraper.scraper.models import MemorySample

if TYPE_CHECKING:
    from eol_scraper.config.settings import Settings

logger = logging.getLogger(__name__)

_MB = 1024 * 1024


class GovernorState(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"
    RESTARTING = "restarting"
    TERMINATED = "terminated"


def _terminate_self() -> None:
    os.kill(os.getpid(), signal.SIGTERM)


class MemoryGovernor:
    """Samples process memory and schedules a restart past the hard limit.

    Args:
        limit_mb: RSS at which the service restarts.
        warning_mb: RSS at which memory history is logged.
        history_size: Number of samples kept for diagnostics.
        restart_delay: Seconds between entering RESTARTING and exiting.
        wait_for_drain: Await ``drain`` (bounded by ``drain_timeout``) before
            the grace delay so an in-flight render can finish.
        drain: Coroutine function that resolves when queued work has settled.
        process: ``psutil.Process`` to measure; defaults to this process.
        exit_func: Called once to end the process.
        sleep: Awaitable sleep, replaceable in tests.
    """

    def __init__(
        self,
        *,
        limit_mb: int = 450,
        warning_mb: int = 380,
        history_size: int = 20,
        restart_delay: float = 2.0,
        wait_for_drain: bool = False,
        drain_timeout: float = 30.0,
        drain: Callable[[float | None], Awaitable[Any]] | None = None,
        process: psutil.Process | None = None,
        exit_func: Callable[[], None] = _terminate_self,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.limit_mb = limit_mb
        self.warning_mb = warning_mb
        self.restart_delay = restart_delay
        self.wait_for_drain = wait_for_drain
        self.drain_timeout = drain_timeout
        self._drain = drain
        self._process = process or psutil.Process()
        self._exit = exit_func
        self._sleep = sleep
        self._history: deque[MemorySample] = deque(maxlen=history_size)
        self._state = GovernorState.NORMAL
        self._restart_task: asyncio.Task | None = None
        self.request_count = 0

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> MemoryGovernor:
        kwargs: dict[str, Any] = {
            "limit_mb": settings.memory_limit_mb,
            "warning_mb": settings.memory_warning_mb,
            "history_size": settings.memory_history_size,
            "restart_delay": settings.restart_delay_seconds,
            "wait_for_drain": settings.restart_wait_for_drain,
            "drain_timeout": settings.restart_drain_timeout_seconds,
        }
        kwargs.update(overrides)
        return cls(**kwargs)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> GovernorState:
        return self._state

    @property
    def accepting_requests(self) -> bool:
        return self._state in (GovernorState.NORMAL, GovernorState.WARNING)

    @property
    def is_shutting_down(self) -> bool:
        return not self.accepting_requests

    def increment_request_count(self) -> int:
        self.request_count += 1
        return self.request_count

    @property
    def history(self) -> list[MemorySample]:
        return list(self._history)

    # ------------------------------------------------------------------
    # Measurement
    # ------------------------------------------------------------------

    def usage(self, stage: str = "probe") -> MemorySample:
        """Measure the process without recording the sample.

        ``heap_used_mb`` is the unique set size (memory freed if this process
        exited) and ``heap_total_mb`` the virtual size.
        """
        info = self._process.memory_info()
        try:
            heap_used = self._process.memory_full_info().uss
        except (psutil.AccessDenied, AttributeError):
            heap_used = info.rss
        return MemorySample(
            timestamp=datetime.now(timezone.utc),
            stage=stage,
            rss_mb=round(info.rss / _MB),
            heap_used_mb=round(heap_used / _MB),
            heap_total_mb=round(info.vms / _MB),
            request_count=self.request_count,
        )

    def sample(self, stage: str) -> MemorySample:
        """Measure, record in the history ring and update NORMAL/WARNING state."""
        current = self.usage(stage)
        self._history.append(current)
        if current.rss_mb >= self.warning_mb:
            if self._state is GovernorState.NORMAL:
                self._state = GovernorState.WARNING
            recent = [s.to_dict() for s in list(self._history)[-5:]]
            logger.warning(
                "memory: approaching limit: %dMB RSS (warning threshold %dMB)",
                current.rss_mb,
                self.warning_mb,
            )
            logger.info("memory: history (last 5): %s", json.dumps(recent))
        elif self._state is GovernorState.WARNING:
            self._state = GovernorState.NORMAL
        return current

    def force_gc(self) -> int:
        """Run a full collection and log how much RSS it released."""
        before = self.usage("gc_before").rss_mb
        collected = gc.collect()
        after = self.usage("gc_after").rss_mb
        logger.info(
            "memory: GC %dMB -> %dMB (freed %dMB, %d objects)",
            before,
            after,
            before - after,
            collected,
        )
        return collected

    def is_over_limit(self, sample: MemorySample | None = None) -> bool:
        """``True`` when ``sample`` (or a fresh measurement) is at the hard limit."""
        current = sample or self.usage("limit_check")
        return current.rss_mb >= self.limit_mb

    def should_restart(self) -> bool:
        current = self.usage("restart_check")
        if not self.is_over_limit(current):
            return False
        logger.error(
            "memory: limit reached: %dMB >= %dMB, scheduling restart "
            "(uss=%dMB vms=%dMB, requests=%d)",
            current.rss_mb,
            self.limit_mb,
            current.heap_used_mb,
            current.heap_total_mb,
            self.request_count,
        )
        return True

    # ------------------------------------------------------------------
    # Restart
    # ------------------------------------------------------------------

    def schedule_restart_if_needed(self) -> bool:
        """Begin a restart when over the hard limit.  Returns ``True`` if restarting."""
        if self.is_shutting_down:
            return True
        if not self.should_restart():
            return False
        self.begin_restart("memory limit reached")
        return True

    def begin_restart(self, reason: str) -> None:
        """Stop accepting requests and exit after the grace delay."""
        if self.is_shutting_down:
            return
        self._state = GovernorState.RESTARTING
        logger.warning(
            "memory: restarting (%s); exiting in %.1fs%s",
            reason,
            self.restart_delay,
            " after queue drains" if self.wait_for_drain else "",
        )
        self._restart_task = asyncio.get_running_loop().create_task(
            self._restart_after_delay(), name="memory-governor-restart"
        )

    async def _restart_after_delay(self) -> None:
        if self.wait_for_drain and self._drain is not None:
            await self._drain(self.drain_timeout)
        await self._sleep(self.restart_delay)
        self._state = GovernorState.TERMINATED
        logger.info(
            "memory: exiting process for restart after %d requests", self.request_count
        )
        self._exit()

    async def wait_for_restart(self) -> None:
        """Await the pending restart task, if any (used by tests and shutdown)."""
        if self._restart_task is not None:
            await self._restart_task

    def snapshot(self) -> dict[str, Any]:
        """Current usage in the ``/health`` ``memory`` shape."""
        current = self.usage("health")
        return {
            "rss": current.rss_mb,
            "heapUsed": current.heap_used_mb,
            "heapTotal": current.heap_total_mb,
            "limit": self.limit_mb,
            "warning": self.warning_mb,
            "percentUsed": round(current.rss_mb / self.limit_mb * 100) if self.limit_mb else 0,
        }
