"""Supervision of detached background work (one poller per submission)."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import Any

import structlog

log = structlog.get_logger(__name__)


class BackgroundTasks:
    """Owns every spawned asyncio task so it can be listed, cancelled and drained."""

    def __init__(self) -> None:
        self._tasks: dict[str, asyncio.Task[Any]] = {}

    def __len__(self) -> int:
        return len(self._tasks)

    def active(self) -> list[str]:
        return list(self._tasks)

    def spawn(self, key: str, coro: Coroutine[Any, Any, Any]) -> asyncio.Task[Any]:
        if key in self._tasks:
            coro.close()
            raise ValueError(f"Background task {key!r} is already running")
        task = asyncio.create_task(coro, name=key)
        self._tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_done(k, t))
        log.info("background_task_spawned", key=key, active=len(self._tasks))
        return task

    def _on_done(self, key: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            log.info("background_task_cancelled", key=key)
            return
        exc = task.exception()
        if exc is not None:
            log.error("background_task_crashed", key=key, error=str(exc), exc_info=exc)

    def cancel(self, key: str) -> bool:
        task = self._tasks.get(key)
        if task is None or task.done():
            return False
        task.cancel()
        return True

    async def drain(self, timeout: float) -> None:
        """Wait up to `timeout` seconds for running work, then cancel the rest."""
        pending = list(self._tasks.values())
        if not pending:
            return
        log.info("background_tasks_draining", count=len(pending), timeout_s=timeout)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)
            log.warning("background_tasks_cancelled_on_shutdown", count=len(still_running))
