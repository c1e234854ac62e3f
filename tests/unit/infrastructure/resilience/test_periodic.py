import asyncio

import pytest

from atsgate.infrastructure.resilience.periodic import PeriodicTask


@pytest.mark.asyncio
async def test_runs_repeatedly_until_stopped():
    runs = []

    async def tick():
        runs.append(1)

    task = PeriodicTask(tick, interval=0.01, name="tick")
    task.start()
    assert task.running
    await asyncio.sleep(0.08)
    await task.stop()

    assert not task.running
    count = len(runs)
    assert count >= 2
    await asyncio.sleep(0.03)
    assert len(runs) == count


@pytest.mark.asyncio
async def test_failed_run_does_not_stop_schedule():
    runs = []

    async def flaky():
        runs.append(1)
        if len(runs) == 1:
            raise RuntimeError("boom")

    task = PeriodicTask(flaky, interval=0.01)
    task.start()
    await asyncio.sleep(0.08)
    await task.stop()

    assert len(runs) >= 2


@pytest.mark.asyncio
async def test_start_twice_keeps_single_task():
    async def noop():
        pass

    task = PeriodicTask(noop, interval=10)
    task.start()
    first = task._task
    task.start()
    assert task._task is first
    await task.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_noop():
    async def noop():
        pass

    task = PeriodicTask(noop, interval=1)
    await task.stop()
    assert not task.running


def test_rejects_non_positive_interval():
    async def noop():
        pass

    with pytest.raises(ValueError):
        PeriodicTask(noop, interval=0)
