"""Periodic liveness probing of connected lights.

A BLE link can die silently: the adapter keeps reporting the light as
connected while nothing reaches it anymore, and the disconnect callback
never fires.  The monitor catches those links by reading a
characteristic from every connected, idle light on a fixed cadence.
A failed read is authoritative and the light is handed to *on_failure*
at once, without waiting for a link-drop event that may never come.

Probing competes with scanning and connecting for the same radio, so
the whole sweep is skipped while *is_paused* returns ``True``.

Usage::

    monitor = PollMonitor(
        records.values(),
        on_failure=demote,
        interval=5.0,
        is_paused=lambda: scanner.in_flight or not gate.idle,
    )
    monitor.start()
    ...
    monitor.stop()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable

from .device import DeviceRecord

_LOGGER = logging.getLogger(__name__)


class PollMonitor:
    """Probe connected lights and report the ones whose link is dead.

    Parameters
    ----------
    records:
        The device records to sweep.  Iterated afresh on every tick.
    on_failure:
        Called with the record and the exception when a probe fails.
    interval:
        Seconds between sweeps.
    probe_timeout:
        Maximum seconds one probe may take before it counts as failed.
    is_paused:
        Returns ``True`` while sweeps must be skipped.
    """

    def __init__(
        self,
        records: Iterable[DeviceRecord],
        on_failure: Callable[[DeviceRecord, Exception], None],
        interval: float = 5.0,
        probe_timeout: float = 5.0,
        is_paused: Callable[[], bool] | None = None,
    ) -> None:
        self._records = records
        self._on_failure = on_failure
        self._interval = interval
        self._probe_timeout = probe_timeout
        self._is_paused = is_paused or (lambda: False)
        self._task: asyncio.Task[None] | None = None
        self._started = False
        self._poll_count = 0

    @property
    def is_running(self) -> bool:
        """Return whether the monitor loop is active."""
        return self._started and self._task is not None and not self._task.done()

    @property
    def poll_count(self) -> int:
        """Number of sweeps that actually probed (paused ticks excluded)."""
        return self._poll_count

    def start(self) -> None:
        """Start the sweep loop.  Calling it twice is a no-op."""
        if self._started:
            return
        self._started = True
        self._task = asyncio.ensure_future(self._monitor())
        _LOGGER.info("Polling lights every %.1f s", self._interval)

    def stop(self) -> None:
        """Stop the sweep loop.  Safe to call multiple times or before start."""
        self._started = False
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def poll_once(self) -> dict[str, bool] | None:
        """Run one sweep.

        Returns a mapping of light name to probe result, or ``None`` when
        the sweep was skipped because the radio is busy.
        """
        if self._is_paused():
            return None

        self._poll_count += 1
        results: dict[str, bool] = {}
        for record in list(self._records):
            if not record.connected or record.busy or record.handle is None:
                continue
            handle = record.handle
            try:
                await asyncio.wait_for(handle.read_probe(), timeout=self._probe_timeout)
            except Exception as exc:
                results[record.name] = False
                # State may have moved on while the probe was suspended
                if record.handle is handle and record.connected:
                    _LOGGER.warning(
                        "%s: liveness probe failed (%s), link is dead",
                        record.name,
                        exc or type(exc).__name__,
                    )
                    self._on_failure(record, exc)
                continue
            results[record.name] = True

        if results:
            _LOGGER.debug(
                "Poll #%d: %s",
                self._poll_count,
                " | ".join(
                    f"{name}:{'ok' if ok else 'fail'}" for name, ok in results.items()
                ),
            )
        return results

    async def _monitor(self) -> None:
        try:
            while self._started:
                await asyncio.sleep(self._interval)
                try:
                    await self.poll_once()
                except Exception:
                    _LOGGER.exception("Poll sweep failed")
        except asyncio.CancelledError:
            pass
        finally:
            self._started = False
