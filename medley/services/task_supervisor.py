from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from medley.errors import ServiceBusyError

logger = logging.getLogger("task_supervisor")


class TaskSupervisor:
    """
    Owns background pipeline tasks for this process.

    max_pending caps how many tasks may be tracked at once (queued + running);
    spawn() refuses work beyond it. max_running caps how many run concurrently,
    the rest wait on a semaphore.
    """

    def __init__(self, max_running: int = 4, max_pending: int = 32):
        self.max_running = max(1, int(max_running))
        self.max_pending = max(self.max_running, int(max_pending))
        self._sem = asyncio.Semaphore(self.max_running)
        self._tasks: Set[asyncio.Task] = set()
        self._running = 0
        self._completed = 0
        self._failed = 0
        self._cancelled = 0

    def has_capacity(self) -> bool:
        return len(self._tasks) < self.max_pending

    def spawn(
        self,
        name: str,
        coro_factory: Callable[[], Awaitable[Any]],
        on_cancelled: Optional[Callable[[], Awaitable[Any]]] = None,
    ) -> asyncio.Task:
        """on_cancelled runs if the task is cancelled while still queued for a slot."""
        if not self.has_capacity():
            logger.warning("supervisor_full", extra={"task": name, "tracked": len(self._tasks)})
            raise ServiceBusyError()

        task = asyncio.create_task(self._run(coro_factory, on_cancelled), name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    async def _run(
        self,
        coro_factory: Callable[[], Awaitable[Any]],
        on_cancelled: Optional[Callable[[], Awaitable[Any]]],
    ) -> Any:
        try:
            await self._sem.acquire()
        except asyncio.CancelledError:
            if on_cancelled is not None:
                await on_cancelled()
            raise

        self._running += 1
        try:
            return await coro_factory()
        finally:
            self._running -= 1
            self._sem.release()

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            self._cancelled += 1
            logger.warning("task_cancelled", extra={"task": task.get_name()})
            return

        exc = task.exception()
        if exc is not None:
            self._failed += 1
            logger.error("task_failed", extra={"task": task.get_name(), "error": str(exc)}, exc_info=exc)
        else:
            self._completed += 1

    def stats(self) -> Dict[str, int]:
        tracked = len(self._tasks)
        return {
            "running": self._running,
            "pending": max(0, tracked - self._running),
            "completed": self._completed,
            "failed": self._failed,
            "cancelled": self._cancelled,
            "max_running": self.max_running,
            "max_pending": self.max_pending,
        }

    async def shutdown(self, timeout: float = 30.0) -> None:
        if not self._tasks:
            return

        tasks = set(self._tasks)
        logger.info("supervisor_draining", extra={"tasks": len(tasks), "timeout": timeout})
        _, pending = await asyncio.wait(tasks, timeout=timeout)
        for t in pending:
            t.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning("supervisor_cancelled_tasks", extra={"tasks": len(pending)})
