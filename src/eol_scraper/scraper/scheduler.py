"""Single-flight scheduler for browser-bound work.

All work that needs a Chromium session is submitted here.  Tasks run one at
a time, in submission order, on a single worker task draining an
:class:`asyncio.Queue`.  The fast-fetch path never touches the scheduler.

A task that raises does not stop the worker: the exception is set on the
task's future and the next task starts.  Futures whose exception nobody
awaits are marked as retrieved so asyncio does not warn about them.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

TaskFactory = Callable[[], Awaitable[Any]]


@dataclass
class QueuedTask:
    """A deferred unit of browser work and the future that reports its outcome."""

    factory: TaskFactory
    future: asyncio.Future
    label: str = ""
    enqueued_at: float = field(default_factory=time.monotonic)


def _mark_retrieved(future: asyncio.Future) -> None:
    if not future.cancelled():
        future.exception()


class BrowserTaskScheduler:
    """Runs queued browser tasks strictly one at a time, FIFO."""

    def __init__(self) -> None:
        self._queue: asyncio.Queue[QueuedTask] = asyncio.Queue()
        self._worker: asyncio.Task | None = None
        self._running = 0
        self.completed = 0
        self.failed = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start the worker task.  Must be called from a running event loop."""
        if self._worker is None or self._worker.done():
            self._worker = asyncio.get_running_loop().create_task(
                self._run(), name="browser-task-scheduler"
            )
            logger.info("scheduler: worker started")

    async def stop(self) -> None:
        """Cancel the worker and every task still waiting in the queue."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        while not self._queue.empty():
            queued = self._queue.get_nowait()
            queued.future.cancel()
            self._queue.task_done()
        self._worker = None
        logger.info("scheduler: worker stopped")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def enqueue(self, factory: TaskFactory, *, label: str = "") -> asyncio.Future:
        """Queue ``factory`` and return a future for its result.

        ``factory`` is called only when every earlier task has settled.
        """
        self.start()
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        future.add_done_callback(_mark_retrieved)
        self._queue.put_nowait(QueuedTask(factory=factory, future=future, label=label))
        logger.info(
            "scheduler: queued %s (pending=%d, running=%d)",
            label or "task",
            self.pending,
            self.running,
        )
        return future

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> int:
        return self._running

    @property
    def idle(self) -> bool:
        return self._running == 0 and self._queue.empty()

    async def drain(self, timeout: float | None = None) -> bool:
        """Wait until every queued task has settled.

        Returns:
            ``True`` if the queue drained, ``False`` if ``timeout`` expired.
        """
        try:
            await asyncio.wait_for(self._queue.join(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                "scheduler: drain timed out after %ss (pending=%d, running=%d)",
                timeout,
                self.pending,
                self.running,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Worker
    # ------------------------------------------------------------------

    async def _run(self) -> None:
        while True:
            queued = await self._queue.get()
            try:
                if queued.future.cancelled():
                    continue
                await self._execute(queued)
            finally:
                self._queue.task_done()

    async def _execute(self, queued: QueuedTask) -> None:
        label = queued.label or "task"
        waited = time.monotonic() - queued.enqueued_at
        logger.info("scheduler: starting %s after %.1fs in queue", label, waited)
        self._running = 1
        try:
            result = await queued.factory()
        except asyncio.CancelledError:
            queued.future.cancel()
            raise
        except Exception as exc:  # noqa: BLE001 - the worker must survive any task failure
            self.failed += 1
            logger.error("scheduler: %s failed: %s", label, exc)
            if not queued.future.done():
                queued.future.set_exception(exc)
        else:
            self.completed += 1
            if not queued.future.done():
                queued.future.set_result(result)
        finally:
            self._running = 0
