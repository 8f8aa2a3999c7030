"""Deduplicated reconnect timers plus a backstop sweep.

Each light owns at most one pending reconnect timer, stored on its
:class:`~bleak_light_manager.device.DeviceRecord`.  Scheduling a
reconnect for a light that already has one replaces the old timer
instead of stacking a second one, so a burst of failure signals for the
same light (link drop, failed probe, failed write) still produces a
single retry.

When a timer fires:

1. A light that is already connected needs nothing.
2. A light that is busy (a connect sequence owns it) is re-armed rather
   than dropped, because busy is transient.
3. Otherwise the reconnect coroutine supplied by the orchestrator runs
   as a tracked task.  If it raises, the error is logged and the light
   is re-armed.

Timers can be lost without anyone noticing (for example when the host
sleeps), so a sweep task periodically re-arms every light that is
neither connected nor busy.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping

from .device import DeviceRecord

_LOGGER = logging.getLogger(__name__)


class ReconnectScheduler:
    """Arm, dedupe and fire per-light reconnect timers.

    Parameters
    ----------
    records:
        The device table, keyed by normalised address.
    reconnect:
        Coroutine function run with the address when a timer fires.
    interval:
        Default delay between scheduling and firing.
    """

    def __init__(
        self,
        records: Mapping[str, DeviceRecord],
        reconnect: Callable[[str], Awaitable[None]],
        interval: float = 10.0,
    ) -> None:
        self._records = records
        self._reconnect = reconnect
        self._interval = interval
        self._tasks: set[asyncio.Task[None]] = set()
        self._sweep_task: asyncio.Task[None] | None = None
        self._closed = False

    @property
    def interval(self) -> float:
        return self._interval

    def pending(self, address: str) -> bool:
        """Whether *address* has an armed reconnect timer."""
        record = self._records.get(address)
        return record is not None and record.reconnect_timer is not None

    def schedule(self, address: str, delay: float | None = None) -> None:
        """Arm a reconnect for *address*, replacing any pending one."""
        if self._closed:
            return
        record = self._records[address]
        self.cancel(address)
        delay = self._interval if delay is None else delay
        loop = asyncio.get_running_loop()
        record.reconnect_timer = loop.call_later(delay, self._fire, address)
        _LOGGER.debug("Will retry %s in %.1f s", record.name, delay)

    def cancel(self, address: str) -> None:
        """Disarm the pending reconnect of *address*, if any."""
        record = self._records.get(address)
        if record is None or record.reconnect_timer is None:
            return
        record.reconnect_timer.cancel()
        record.reconnect_timer = None

    def cancel_all(self) -> None:
        for address in self._records:
            self.cancel(address)

    def _fire(self, address: str) -> None:
        record = self._records[address]
        record.reconnect_timer = None
        if self._closed or record.connected:
            return
        if record.busy:
            _LOGGER.debug("%s is busy, deferring reconnect", record.name)
            self.schedule(address)
            return

        task = asyncio.ensure_future(self._run(address))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, address: str) -> None:
        record = self._records[address]
        _LOGGER.info("Reconnecting to %s", record.name)
        try:
            await self._reconnect(address)
        except Exception:
            _LOGGER.exception("Reconnect of %s failed unexpectedly", record.name)
            self.schedule(address)

    def sweep(self) -> int:
        """Re-arm every light that is neither connected nor busy.

        Returns the number of lights re-armed.
        """
        count = 0
        for address, record in self._records.items():
            if record.connected or record.busy:
                continue
            self.schedule(address)
            count += 1
        return count

    def start_sweep(self, interval: float = 3600.0) -> None:
        """Start the periodic backstop sweep.

        No-op when already running or after :meth:`close`.
        """
        if self._closed:
            return
        if self._sweep_task is not None and not self._sweep_task.done():
            return
        self._sweep_task = asyncio.ensure_future(self._sweep_loop(interval))

    async def _sweep_loop(self, interval: float) -> None:
        try:
            while not self._closed:
                await asyncio.sleep(interval)
                count = self.sweep()
                if count:
                    _LOGGER.info("Sweep re-armed %d disconnected light(s)", count)
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        """Disarm all timers and cancel the sweep and running reconnects."""
        self._closed = True
        self.cancel_all()
        tasks = list(self._tasks)
        if self._sweep_task is not None:
            tasks.append(self._sweep_task)
            self._sweep_task = None
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
