"""Tests for scheduler module — deduplicated reconnect timers."""

import asyncio

import pytest

from bleak_light_manager.device import ConnectionState, DeviceRecord
from bleak_light_manager.scheduler import ReconnectScheduler

ADDRESS = "aa:bb:cc:dd:ee:01"


def _make(interval=0.05):
    records = {ADDRESS: DeviceRecord(ADDRESS, "Key light")}
    attempts: list[tuple[str, float]] = []

    async def reconnect(address):
        attempts.append((address, asyncio.get_running_loop().time()))

    return records, attempts, ReconnectScheduler(records, reconnect, interval=interval)


@pytest.mark.asyncio
async def test_schedule_fires_once():
    records, attempts, scheduler = _make()
    scheduler.schedule(ADDRESS)
    assert scheduler.pending(ADDRESS)
    await asyncio.sleep(0.15)
    assert [a for a, _ in attempts] == [ADDRESS]
    assert not scheduler.pending(ADDRESS)
    await scheduler.close()


@pytest.mark.asyncio
async def test_reschedule_supersedes_pending_timer():
    records, attempts, scheduler = _make()
    loop = asyncio.get_running_loop()

    scheduler.schedule(ADDRESS, delay=0.2)
    first_timer = records[ADDRESS].reconnect_timer
    await asyncio.sleep(0.1)
    rescheduled_at = loop.time()
    scheduler.schedule(ADDRESS, delay=0.2)

    assert first_timer.cancelled()
    assert records[ADDRESS].reconnect_timer is not first_timer

    await asyncio.sleep(0.15)  # the first timer would have fired by now
    assert attempts == []

    await asyncio.sleep(0.15)
    assert len(attempts) == 1
    assert attempts[0][1] >= rescheduled_at + 0.2 - 0.01
    await scheduler.close()


@pytest.mark.asyncio
async def test_connected_device_is_skipped():
    records, attempts, scheduler = _make()
    records[ADDRESS].state = ConnectionState.CONNECTED
    scheduler.schedule(ADDRESS)
    await asyncio.sleep(0.1)
    assert attempts == []
    assert not scheduler.pending(ADDRESS)
    await scheduler.close()


@pytest.mark.asyncio
async def test_busy_device_is_rearmed():
    records, attempts, scheduler = _make()
    records[ADDRESS].busy = True
    scheduler.schedule(ADDRESS)
    await asyncio.sleep(0.08)
    assert attempts == []
    assert scheduler.pending(ADDRESS)

    records[ADDRESS].busy = False
    await asyncio.sleep(0.1)
    assert len(attempts) == 1
    await scheduler.close()


@pytest.mark.asyncio
async def test_failing_reconnect_is_rearmed():
    records = {ADDRESS: DeviceRecord(ADDRESS, "Key light")}
    calls = []

    async def reconnect(address):
        calls.append(address)
        raise RuntimeError("boom")

    scheduler = ReconnectScheduler(records, reconnect, interval=0.05)
    scheduler.schedule(ADDRESS)
    await asyncio.sleep(0.07)
    assert len(calls) == 1
    assert scheduler.pending(ADDRESS)
    await scheduler.close()


@pytest.mark.asyncio
async def test_cancel_and_cancel_all():
    records, attempts, scheduler = _make()
    scheduler.schedule(ADDRESS)
    scheduler.cancel(ADDRESS)
    assert not scheduler.pending(ADDRESS)
    scheduler.cancel(ADDRESS)  # no-op

    scheduler.schedule(ADDRESS)
    scheduler.cancel_all()
    await asyncio.sleep(0.1)
    assert attempts == []
    await scheduler.close()


@pytest.mark.asyncio
async def test_sweep_rearms_idle_disconnected_devices():
    records = {
        "a": DeviceRecord("a", "A"),
        "b": DeviceRecord("b", "B", state=ConnectionState.CONNECTED),
        "c": DeviceRecord("c", "C", busy=True),
    }

    async def reconnect(address):
        pass

    scheduler = ReconnectScheduler(records, reconnect, interval=10.0)
    assert scheduler.sweep() == 1
    assert scheduler.pending("a")
    assert not scheduler.pending("b")
    assert not scheduler.pending("c")
    await scheduler.close()


@pytest.mark.asyncio
async def test_sweep_task_runs_periodically():
    records, attempts, scheduler = _make(interval=10.0)
    scheduler.start_sweep(0.03)
    await asyncio.sleep(0.05)
    assert scheduler.pending(ADDRESS)
    await scheduler.close()
    assert not scheduler.pending(ADDRESS)


@pytest.mark.asyncio
async def test_schedule_after_close_is_ignored():
    records, attempts, scheduler = _make()
    await scheduler.close()
    scheduler.schedule(ADDRESS)
    assert not scheduler.pending(ADDRESS)


@pytest.mark.asyncio
async def test_sweep_not_started_after_close():
    records, attempts, scheduler = _make()
    await scheduler.close()
    scheduler.start_sweep(0.01)
    assert scheduler._sweep_task is None
