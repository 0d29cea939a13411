"""Async task tracking for workflow background work."""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

from .logging_utils import LoggerLike, ensure_structured_logger


TaskErrorHandler = Callable[[str, BaseException], None]


class TaskManager:
    """Owns named asyncio tasks (scan loop, debounce, preview, upload) with clean cancellation."""

    def __init__(
        self,
        *,
        logger: LoggerLike = None,
        on_task_error: Optional[TaskErrorHandler] = None,
    ) -> None:
        self._logger = ensure_structured_logger(logger, component="TaskManager", fallback_name=__name__)
        self._tasks: Dict[str, asyncio.Task[Any]] = {}
        self._on_task_error = on_task_error
        self._closed = False

    # ------------------------------------------------------------------
    # Task lifecycle

    def create(self, name: str, coro: Awaitable[Any]) -> asyncio.Task[Any]:
        """Spawn a tracked task; a live task with the same name must be cancelled first."""

        if self._closed:
            raise RuntimeError(f"Cannot create task {name}; task manager closed")
        existing = self._tasks.get(name)
        if existing is not None and not existing.done():
            raise RuntimeError(f"Task {name} is already running")

        task = asyncio.create_task(self._run_task(name, coro), name=name)
        self._tasks[name] = task
        task.add_done_callback(lambda t, key=name: self._forget(key, t))
        self._logger.debug("Task created: %s", name)
        return task

    def _forget(self, name: str, task: asyncio.Task[Any]) -> None:
        if self._tasks.get(name) is task:
            self._tasks.pop(name, None)

    async def _run_task(self, name: str, coro: Awaitable[Any]) -> Any:
        try:
            return await coro
        except asyncio.CancelledError:
            self._logger.debug("Task cancelled: %s", name)
            raise
        except Exception as exc:
            self._logger.exception("Task error: %s", name)
            if self._on_task_error:
                self._on_task_error(name, exc)
            return None

    async def cancel(self, name: str, *, timeout: float = 5.0) -> None:
        """Cancel ``name`` and wait until it has finished unwinding."""

        task = self._tasks.get(name)
        if task is None:
            return
        if task is asyncio.current_task():
            return
        if not task.done():
            task.cancel()
            await self._wait_for_tasks((task,), timeout=timeout)
        self._forget(name, task)

    async def cancel_all(self, *, reason: str = "shutdown", timeout: float = 5.0) -> None:
        """Cancel all tracked tasks and wait for completion."""

        current = asyncio.current_task()
        tasks = [task for task in self._tasks.values() if task is not current]
        if not tasks:
            return

        self._logger.info("Cancelling %d tasks (%s)", len(tasks), reason)
        for task in tasks:
            if not task.done():
                task.cancel()

        await self._wait_for_tasks(tasks, timeout=timeout)
        for name, task in list(self._tasks.items()):
            if task in tasks:
                self._tasks.pop(name, None)

    async def close(self) -> None:
        await self.cancel_all(reason="close")
        self._closed = True

    async def _wait_for_tasks(self, tasks: Iterable[asyncio.Task[Any]], *, timeout: float) -> None:
        pending = {task for task in tasks if not task.done()}
        if not pending:
            return
        _done, still_pending = await asyncio.wait(pending, timeout=timeout)
        if still_pending:
            self._logger.warning(
                "Tasks did not finish within %.1fs: %s",
                timeout,
                sorted(task.get_name() for task in still_pending),
            )

    # ------------------------------------------------------------------
    # Introspection

    def is_running(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    def active_names(self) -> list[str]:
        return [name for name, task in self._tasks.items() if not task.done()]

    def active_count(self) -> int:
        return len(self.active_names())


__all__ = ["TaskManager", "TaskErrorHandler"]
