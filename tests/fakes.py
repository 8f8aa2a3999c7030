"""In-memory radio adapter and light handles for orchestrator tests."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from bleak_light_manager.const import ManagerConfig
from bleak_light_manager.exceptions import ConnectFailure


def fast_config(**overrides) -> ManagerConfig:
    """A ManagerConfig with timings short enough for tests."""
    defaults = {
        "initial_scan_timeout": 0.05,
        "reconnect_scan_timeout": 0.05,
        "reconnect_interval": 0.05,
        "poll_interval": 100.0,
        "probe_timeout": 0.2,
        "sweep_interval": 3600.0,
        "connect_concurrency": 2,
        "connect_stagger": 0.0,
        "connect_timeout": 1.0,
        "write_timeout": 0.5,
        "disconnect_timeout": 0.5,
    }
    defaults.update(overrides)
    return ManagerConfig(**defaults)


class ConcurrencyTracker:
    """Record the peak number of overlapping operations."""

    def __init__(self) -> None:
        self.active = 0
        self.peak = 0

    def enter(self) -> None:
        self.active += 1
        self.peak = max(self.peak, self.active)

    def exit(self) -> None:
        self.active -= 1


class FakeHandle:
    """Stands in for LightHandle."""

    def __init__(
        self,
        address: str,
        name: str = "Light",
        rssi: int | None = -60,
        *,
        connect_errors: list[Exception | None] | None = None,
        connect_delay: float = 0.0,
        tracker: ConcurrencyTracker | None = None,
    ) -> None:
        self.address = address.lower()
        self.name = name
        self.rssi = rssi
        self.connected = False
        self.connect_errors = list(connect_errors or [])
        self.connect_delay = connect_delay
        self.tracker = tracker
        self.connect_calls = 0
        self.disconnect_calls = 0
        self.probe_calls = 0
        self.write_error: Exception | None = None
        self.probe_error: Exception | None = None
        self.disconnect_error: Exception | None = None
        self.writes: list[bytes] = []
        self.notify_callback: Callable[[bytes], None] | None = None
        self._link_callbacks: list[Callable[[], None]] = []

    @property
    def is_connected(self) -> bool:
        return self.connected

    async def connect(self) -> None:
        self.connect_calls += 1
        if self.tracker is not None:
            self.tracker.enter()
        try:
            if self.connect_delay:
                await asyncio.sleep(self.connect_delay)
            error = self.connect_errors.pop(0) if self.connect_errors else None
            if error is not None:
                raise error
            self.connected = True
        finally:
            if self.tracker is not None:
                self.tracker.exit()

    async def disconnect(self) -> None:
        self.disconnect_calls += 1
        self.connected = False
        if self.disconnect_error is not None:
            raise self.disconnect_error

    async def write(self, data: bytes) -> None:
        if self.write_error is not None:
            raise self.write_error
        self.writes.append(bytes(data))

    async def subscribe(self, callback: Callable[[bytes], None]) -> None:
        self.notify_callback = callback

    async def read_probe(self) -> bytes:
        self.probe_calls += 1
        if self.probe_error is not None:
            raise self.probe_error
        return b"\x00"

    def on_link_dropped(self, callback: Callable[[], None]) -> Callable[[], None]:
        self._link_callbacks.append(callback)

        def _remove() -> None:
            if callback in self._link_callbacks:
                self._link_callbacks.remove(callback)

        return _remove

    @property
    def link_listener_count(self) -> int:
        return len(self._link_callbacks)

    def drop_link(self) -> None:
        """Simulate the adapter reporting a lost link."""
        self.connected = False
        callbacks, self._link_callbacks = self._link_callbacks, []
        for callback in callbacks:
            callback()


class FakeAdapter:
    """Stands in for BleakRadioAdapter.  Returns the visible handles."""

    def __init__(self, handles: list[FakeHandle] = (), delay: float = 0.0) -> None:
        self.handles = {handle.address: handle for handle in handles}
        self.delay = delay
        self.error: Exception | None = None
        self.calls: list[set[str] | None] = []
        self.active = 0
        self.peak = 0

    async def discover(self, timeout, targets=None):
        self.calls.append(set(targets) if targets else None)
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.error is not None:
                raise self.error
            return list(self.handles.values())
        finally:
            self.active -= 1


def failing_connect(times: int) -> list[Exception | None]:
    return [ConnectFailure("handshake failed") for _ in range(times)]
