"""Tests for TaskRegistry."""

from __future__ import annotations

import asyncio

import pytest

from hatchway.launcher.errors import HatchwayError
from hatchway.launcher.tasks import ShuttingDownError, TaskRegistry


async def test_spawn_runs_and_unregisters() -> None:
    registry = TaskRegistry()
    ran = asyncio.Event()

    async def work() -> None:
        ran.set()

    handle = registry.spawn("work", work())
    await handle.wait()

    assert ran.is_set()
    assert handle.done
    assert handle.name == "work#1"
    assert registry.active_count == 0


async def test_failing_task_is_swallowed() -> None:
    registry = TaskRegistry()

    async def boom() -> None:
        msg = "boom"
        raise RuntimeError(msg)

    handle = registry.spawn("boom", boom())
    await handle.wait()

    assert registry.active_count == 0
    assert await registry.wait_until_drained(timeout=1)


async def test_spawn_refused_during_shutdown() -> None:
    registry = TaskRegistry()
    registry.begin_shutdown()

    async def work() -> None:
        return None

    with pytest.raises(ShuttingDownError, match="not starting late") as excinfo:
        registry.spawn("late", work())
    assert isinstance(excinfo.value, HatchwayError)
    assert registry.is_shutting_down


async def test_drain_times_out_then_cancel_all() -> None:
    registry = TaskRegistry()
    release = asyncio.Event()

    async def blocked() -> None:
        await release.wait()

    handle = registry.spawn("blocked", blocked())
    await asyncio.sleep(0)

    assert not await registry.wait_until_drained(timeout=0.01)
    assert [t.name for t in registry.all_tasks()] == [handle.name]

    assert registry.cancel_all() == 1
    await handle.wait()
    assert registry.active_count == 0


async def test_drain_waits_for_running_tasks() -> None:
    registry = TaskRegistry()
    release = asyncio.Event()

    async def blocked() -> None:
        await release.wait()

    registry.spawn("a", blocked())
    registry.spawn("b", blocked())
    release.set()

    assert await registry.wait_until_drained(timeout=1)
