import asyncio

import pytest

from medley.errors import ServiceBusyError
from medley.services.task_supervisor import TaskSupervisor


@pytest.mark.asyncio
async def test_rejects_work_beyond_max_pending():
    sup = TaskSupervisor(max_running=1, max_pending=2)
    gate = asyncio.Event()

    sup.spawn("a", gate.wait)
    sup.spawn("b", gate.wait)

    assert not sup.has_capacity()
    with pytest.raises(ServiceBusyError):
        sup.spawn("c", gate.wait)

    gate.set()
    await sup.shutdown(timeout=5)
    assert sup.has_capacity()
    assert sup.stats()["completed"] == 2


@pytest.mark.asyncio
async def test_caps_concurrent_runs():
    sup = TaskSupervisor(max_running=2, max_pending=10)
    running = 0
    peak = 0

    async def work():
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1

    for i in range(6):
        sup.spawn(f"job-{i}", work)

    await asyncio.sleep(0)
    assert sup.stats()["running"] <= 2

    await sup.shutdown(timeout=5)
    assert peak == 2
    assert sup.stats()["completed"] == 6


@pytest.mark.asyncio
async def test_counts_failures_without_raising():
    sup = TaskSupervisor(max_running=1, max_pending=2)

    async def boom():
        raise RuntimeError("nope")

    task = sup.spawn("boom", boom)
    await asyncio.wait([task])
    await asyncio.sleep(0)

    stats = sup.stats()
    assert stats["failed"] == 1
    assert stats["running"] == 0
    assert stats["pending"] == 0


@pytest.mark.asyncio
async def test_shutdown_cancels_stragglers():
    sup = TaskSupervisor(max_running=1, max_pending=2)
    task = sup.spawn("forever", lambda: asyncio.sleep(3600))

    await sup.shutdown(timeout=0.05)

    assert task.cancelled()
    assert sup.stats()["cancelled"] == 1


@pytest.mark.asyncio
async def test_shutdown_notifies_tasks_still_waiting_for_a_slot():
    sup = TaskSupervisor(max_running=1, max_pending=3)
    notified = []

    async def note(name):
        notified.append(name)

    running = sup.spawn("running", lambda: asyncio.sleep(3600), on_cancelled=lambda: note("running"))
    queued = sup.spawn("queued", lambda: asyncio.sleep(3600), on_cancelled=lambda: note("queued"))

    await sup.shutdown(timeout=0.05)

    assert running.cancelled() and queued.cancelled()
    assert notified == ["queued"]
    assert sup.stats()["cancelled"] == 2
