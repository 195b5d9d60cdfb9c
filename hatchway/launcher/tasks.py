"""In-process background task registry.

Request handlers hand long-running work (ECS launches, termination
confirmers) to the registry and return immediately.  Each spawned unit is
wrapped in a :class:`BackgroundTask` handle so callers (mostly tests) can
await completion deterministically.  Ephemeral -- empty on process restart.
"""

from __future__ import annotations

import asyncio
import itertools
from collections.abc import Coroutine
from typing import Any

from loguru import logger

from hatchway.launcher.errors import HatchwayError


class ShuttingDownError(HatchwayError, RuntimeError):
    """Raised when attempting to spawn a task during shutdown."""


class BackgroundTask:
    """Handle on one spawned unit of work."""

    def __init__(self, name: str, task: asyncio.Task[Any]) -> None:
        self.name = name
        self._task = task

    @property
    def done(self) -> bool:
        return self._task.done()

    async def wait(self) -> None:
        """Wait for the task to finish.  Never raises the task's exception."""
        await asyncio.wait({self._task})

    def cancel(self) -> bool:
        return self._task.cancel()


class TaskRegistry:
    """Registry of background tasks currently running in this process.

    Provides a drain mechanism for graceful shutdown: ``wait_until_drained``
    blocks until every spawned task has finished.
    """

    def __init__(self) -> None:
        self._tasks: dict[str, BackgroundTask] = {}
        self._counter = itertools.count(1)
        self._drain_event = asyncio.Event()
        self._drain_event.set()  # Starts "drained" (no tasks).
        self._shutting_down = False

    # -- Mutation --------------------------------------------------------------

    def spawn(self, name: str, coro: Coroutine[Any, Any, Any]) -> BackgroundTask:
        """Start *coro* in the background.  Raises ``ShuttingDownError`` if shutting down.

        Exceptions escaping *coro* are logged, never re-raised: nobody is
        waiting on the result.
        """
        if self._shutting_down:
            coro.close()
            msg = f"Launcher is shutting down, not starting {name}"
            raise ShuttingDownError(msg)
        key = f"{name}#{next(self._counter)}"
        task = asyncio.create_task(self._run(key, coro), name=key)
        handle = BackgroundTask(key, task)
        self._tasks[key] = handle
        self._drain_event.clear()
        logger.debug("Tasks: spawned {}", key)
        return handle

    async def _run(self, key: str, coro: Coroutine[Any, Any, Any]) -> None:
        try:
            await coro
        except asyncio.CancelledError:
            logger.info("Tasks: {} cancelled", key)
            raise
        except Exception:
            logger.exception("Tasks: {} failed", key)
        finally:
            self._tasks.pop(key, None)
            logger.debug("Tasks: finished {}", key)
            if not self._tasks:
                self._drain_event.set()

    # -- Query -----------------------------------------------------------------

    def all_tasks(self) -> list[BackgroundTask]:
        return list(self._tasks.values())

    @property
    def active_count(self) -> int:
        return len(self._tasks)

    # -- Lifecycle -------------------------------------------------------------

    def begin_shutdown(self) -> None:
        """Mark the registry as shutting down.  New tasks are refused."""
        self._shutting_down = True
        logger.info("Tasks: shutdown initiated, refusing new background work")
        if not self._tasks:
            self._drain_event.set()

    @property
    def is_shutting_down(self) -> bool:
        return self._shutting_down

    def cancel_all(self) -> int:
        """Cancel every running task.  Returns the number cancelled."""
        count = 0
        for handle in self._tasks.values():
            if handle.cancel():
                count += 1
        return count

    async def wait_until_drained(self, timeout: float | None = None) -> bool:
        """Wait until every task has finished.

        Returns ``True`` if the registry is empty, ``False`` if *timeout*
        expired with tasks still running.
        """
        if not self._tasks:
            return True
        try:
            await asyncio.wait_for(self._drain_event.wait(), timeout=timeout)
        except TimeoutError:
            logger.warning(
                "Tasks: drain timed out after {}s with {} tasks still running",
                timeout,
                len(self._tasks),
            )
            return False
        else:
            return True
