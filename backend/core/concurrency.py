"""
Concurrency helpers shared by the alert engine and the scheduler.

  - WorkspaceLocks: one asyncio.Lock per workspace so two sweeps of the same
    workspace never interleave their read-then-write sequence.
  - BackgroundTaskTracker: owns fire-and-forget tasks (notifications) so they
    are logged on failure and drained or explicitly cancelled at shutdown.
"""

import asyncio
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any

import structlog

logger = structlog.get_logger()


class WorkspaceLocks:
    """Registry of per-workspace mutexes (process-local).

    A workspace's lock lives only while someone holds or waits on it.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, workspace_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(workspace_id, asyncio.Lock())
        self._users[workspace_id] = self._users.get(workspace_id, 0) + 1
        try:
            if lock.locked():
                logger.info("workspace_lock.waiting", workspace_id=workspace_id)
            async with lock:
                yield
        finally:
            self._users[workspace_id] -= 1
            if not self._users[workspace_id]:
                del self._users[workspace_id]
                del self._locks[workspace_id]

    def is_locked(self, workspace_id: str) -> bool:
        lock = self._locks.get(workspace_id)
        return bool(lock and lock.locked())


class BackgroundTaskTracker:
    """Tracks spawned tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.warning("background.task_cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc is not None:
            logger.error("background.task_failed", task=task.get_name(), error=str(exc))

    async def drain(self, timeout: float = 5.0) -> None:
        """Wait for outstanding tasks; cancel whatever is still running after ``timeout``."""
        if not self._tasks:
            return
        tasks = set(self._tasks)
        _, still_running = await asyncio.wait(tasks, timeout=timeout)
        for task in still_running:
            logger.warning("background.task_dropped", task=task.get_name())
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
