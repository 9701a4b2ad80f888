"""TimerRegistry one-shot and periodic timers."""

import asyncio

import pytest

from matchbot.services.timers import TimerRegistry


@pytest.fixture
def timers():
    registry = TimerRegistry()
    yield registry
    registry.cancel_all()


async def test_one_shot_fires_once(timers):
    calls = []

    async def callback(value):
        calls.append(value)

    timers.schedule("key", 0.01, callback, 42)
    assert timers.is_scheduled("key")

    await asyncio.sleep(0.05)
    assert calls == [42]
    assert not timers.is_scheduled("key")
    assert len(timers) == 0


async def test_rescheduling_replaces_previous(timers):
    calls = []

    async def callback(value):
        calls.append(value)

    timers.schedule("key", 0.01, callback, "first")
    timers.schedule("key", 0.02, callback, "second")

    await asyncio.sleep(0.06)
    assert calls == ["second"]


async def test_cancel(timers):
    calls = []

    async def callback():
        calls.append(True)

    timers.schedule("key", 0.01, callback)
    assert timers.cancel("key") == 1
    assert timers.cancel("key") == 0

    await asyncio.sleep(0.03)
    assert calls == []


async def test_callback_can_reschedule_its_own_key(timers):
    calls = []

    async def callback(n):
        calls.append(n)
        if n < 3:
            timers.schedule("key", 0.01, callback, n + 1)

    timers.schedule("key", 0.01, callback, 1)
    await asyncio.sleep(0.1)
    assert calls == [1, 2, 3]


async def test_failing_callback_is_contained(timers):
    async def boom():
        raise RuntimeError("boom")

    task = timers.schedule("key", 0, boom)
    await asyncio.sleep(0.02)
    assert task.done()
    assert task.exception() is None


async def test_periodic_runs_until_cancelled(timers):
    calls = []

    async def tick():
        calls.append(True)

    timers.schedule_periodic("tick", 0.01, tick)
    await asyncio.sleep(0.055)
    assert timers.cancel("tick") == 1
    seen = len(calls)
    assert seen >= 2

    await asyncio.sleep(0.03)
    assert len(calls) == seen


async def test_periodic_rejects_non_positive_interval(timers):
    async def tick():
        pass

    with pytest.raises(ValueError):
        timers.schedule_periodic("tick", 0, tick)


async def test_cancel_all(timers):
    async def noop():
        pass

    timers.schedule("a", 10, noop)
    timers.schedule("b", 10, noop)
    timers.schedule_periodic("c", 10, noop)

    assert len(timers) == 3
    assert timers.cancel_all() == 3
    await asyncio.sleep(0)
    assert len(timers) == 0
