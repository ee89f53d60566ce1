"""
Supervised fire-and-forget tasks.
Callers never wait on these jobs; failures are captured and logged by the supervisor.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from services.obs.metrics import MetricsCollector, metrics_collector


class BackgroundTaskSupervisor:
    """Semaphore-backed spawner that keeps strong task references and logs failures."""

    def __init__(self, max_concurrency: int = 4, metrics: Optional[MetricsCollector] = None) -> None:
        self._logger = logging.getLogger(__name__)
        self._semaphore = asyncio.Semaphore(max_concurrency)
        self._tasks: Set[asyncio.Task] = set()
        self.metrics = metrics or metrics_collector

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, name: str, coro_factory: Callable[[], Awaitable[object]]) -> asyncio.Task:
        """Schedule ``coro_factory()`` on the running loop and return immediately."""

        async def _runner() -> object:
            async with self._semaphore:
                return await coro_factory()

        task = asyncio.create_task(_runner(), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        self._logger.debug("Background job scheduled | name=%s active=%d", name, len(self._tasks))
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._logger.info("Background job cancelled | name=%s", task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            self.metrics.record_background_failure()
            self._logger.error(
                "Background job failed | name=%s error=%s",
                task.get_name(),
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait for in-flight jobs (shutdown and tests)."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)
