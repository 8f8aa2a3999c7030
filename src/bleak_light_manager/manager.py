"""Connection lifecycle orchestrator for a fixed set of lights.

:class:`LightManager` owns the device table and drives every light
through::

    UNRESOLVED -> CONNECTING -> CONNECTED -> DISCONNECTED -> CONNECTING -> ...

It composes the pieces that keep the shared radio from being asked to
do two things at once:

- :class:`~bleak_light_manager.scanner.SingleFlightScanner` so concurrent
  rediscoveries share one scan.
- :class:`~bleak_light_manager.gate.AdmissionGate` so at most
  ``connect_concurrency`` connect sequences run at a time.
- :class:`~bleak_light_manager.scheduler.ReconnectScheduler` so each
  light has at most one pending retry.
- :class:`~bleak_light_manager.monitor.PollMonitor` to catch silent link
  death; it is paused while any scan or connect is active.

A light leaves ``CONNECTED`` on an explicit link drop, a failed liveness
probe, or a failed command write.  Whatever the cause, its reported
state is reset and a reconnect is scheduled.

Everything runs on one event loop.  Any state read before an ``await``
is re-validated after it, because timers and callbacks may have moved
the light on in the meantime.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from .adapter import BleakRadioAdapter, LightHandle
from .command import build_cct_command, clamp_cct, parse_cct_notification
from .const import (
    BRIGHTNESS_MIN,
    DEFAULT_ON_BRIGHTNESS,
    DEFAULT_TEMPERATURE,
    DeviceConfig,
    ManagerConfig,
    normalize_address,
)
from .device import ConnectionState, DeviceRecord, ReportedState, StatusSnapshot
from .exceptions import (
    AdapterUnavailable,
    ConnectFailure,
    DiscoveryFailure,
    InvalidCommand,
    LightManagerError,
    NotConnected,
    UnknownDevice,
    WriteFailure,
)
from .gate import AdmissionGate
from .monitor import PollMonitor
from .scanner import RadioAdapter, SingleFlightScanner
from .scheduler import ReconnectScheduler

_LOGGER = logging.getLogger(__name__)

ALL_TARGETS = "all"

StatusListener = Callable[[StatusSnapshot], None]


@dataclass(frozen=True)
class CommandOutcome:
    """Result of a command for one target light."""

    address: str
    name: str | None
    success: bool
    error: LightManagerError | None = None

    def as_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "address": self.address,
            "name": self.name,
            "success": self.success,
        }
        if self.error is not None:
            result["error"] = str(self.error)
            result["reason"] = type(self.error).__name__
        return result


class LightManager:
    """Keep a fixed set of lights connected and publish their state.

    Parameters
    ----------
    devices:
        The configured lights, in display order.  Addresses must be
        unique (case-insensitively).
    adapter:
        Radio adapter used for discovery.  Defaults to a
        :class:`~bleak_light_manager.adapter.BleakRadioAdapter` built from
        *config*.
    config:
        Tunables.  Defaults to :class:`~bleak_light_manager.const.ManagerConfig`.

    Usage::

        manager = LightManager(devices)
        manager.add_listener(print)
        await manager.initialize()
        await manager.set_command("all", 50, 5600)
        await manager.shutdown()
    """

    def __init__(
        self,
        devices: Iterable[DeviceConfig],
        adapter: RadioAdapter | None = None,
        config: ManagerConfig | None = None,
    ) -> None:
        self._config = config or ManagerConfig()
        self._records: dict[str, DeviceRecord] = {}
        for device in devices:
            if device.key in self._records:
                raise ValueError(f"Duplicate light address {device.address}")
            self._records[device.key] = DeviceRecord.from_config(device)

        if adapter is None:
            adapter = BleakRadioAdapter(
                self._config.adapter,
                rssi_threshold=self._config.rssi_threshold,
                max_attempts=self._config.connect_attempts,
                disconnect_timeout=self._config.disconnect_timeout,
            )
        self._scanner = SingleFlightScanner(adapter)
        self._gate = AdmissionGate(self._config.connect_concurrency)
        self._scheduler = ReconnectScheduler(
            self._records, self._reconnect, interval=self._config.reconnect_interval
        )
        self._monitor = PollMonitor(
            self._records.values(),
            on_failure=self._on_probe_failed,
            interval=self._config.poll_interval,
            probe_timeout=self._config.probe_timeout,
            is_paused=lambda: self.polling_paused,
        )
        self._listeners: list[StatusListener] = []
        self._cleanup_tasks: set[asyncio.Task[None]] = set()
        self._closing = False

    # ── Accessors ──────────────────────────────────────────────────

    @property
    def config(self) -> ManagerConfig:
        return self._config

    @property
    def records(self) -> tuple[DeviceRecord, ...]:
        return tuple(self._records.values())

    @property
    def scanner(self) -> SingleFlightScanner:
        return self._scanner

    @property
    def gate(self) -> AdmissionGate:
        return self._gate

    @property
    def scheduler(self) -> ReconnectScheduler:
        return self._scheduler

    @property
    def monitor(self) -> PollMonitor:
        return self._monitor

    @property
    def polling_paused(self) -> bool:
        """Whether the radio is busy with a scan or a connect."""
        return self._scanner.in_flight or not self._gate.idle

    def get_record(self, address: str) -> DeviceRecord:
        return self._records[normalize_address(address)]

    def add_listener(self, listener: StatusListener) -> Callable[[], None]:
        """Subscribe to status snapshots.  Returns an unsubscribe function."""
        self._listeners.append(listener)

        def _remove() -> None:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

        return _remove

    # ── Public operations ──────────────────────────────────────────

    async def initialize(self) -> None:
        """Discover and connect every configured light.

        Returns once every startup connect attempt has settled.  Lights
        that were not found, or failed to connect, are left to the
        reconnect scheduler.

        Raises
        ------
        AdapterUnavailable
            If the Bluetooth adapter cannot be used at all.
        """
        _LOGGER.info("Looking for %d configured light(s)", len(self._records))
        try:
            found = await self._scanner.scan(
                self._config.initial_scan_timeout, list(self._records)
            )
        except AdapterUnavailable:
            raise
        except DiscoveryFailure as exc:
            _LOGGER.warning("Initial scan failed: %s", exc)
            found = []

        by_address = {handle.address: handle for handle in found}
        tasks: list[asyncio.Task[None]] = []
        for record in self._records.values():
            handle = by_address.get(record.address)
            if handle is None:
                _LOGGER.warning(
                    "%s (%s) not found, will keep trying", record.name, record.address
                )
                self._scheduler.schedule(record.address)
                continue
            record.replace_handle(handle)
            record.busy = True
            delay = len(tasks) * self._config.connect_stagger
            tasks.append(asyncio.ensure_future(self._startup_connect(record, delay)))

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        if self._closing:
            _LOGGER.info("Shut down during initialization")
            return

        connected = sum(1 for record in self._records.values() if record.connected)
        _LOGGER.info(
            "Initialization complete: %d/%d light(s) connected",
            connected,
            len(self._records),
        )
        self._emit_status()
        self._monitor.start()
        self._scheduler.start_sweep(self._config.sweep_interval)

    async def set_command(
        self,
        target: str | None,
        brightness: float,
        temperature: float,
    ) -> list[CommandOutcome]:
        """Send a CCT command to one light or to all of them.

        Parameters
        ----------
        target:
            A light address, or ``"all"`` / ``None`` for every light.
        brightness:
            0-100.  Clamped.
        temperature:
            Kelvin.  Clamped to the supported range.

        Returns
        -------
        list[CommandOutcome]
            One outcome per target.  Device failures are reported here
            and never raised.
        """
        if target is None or target.strip().lower() == ALL_TARGETS:
            records = list(self._records.values())
        else:
            record = self._records.get(normalize_address(target))
            if record is None:
                return [
                    CommandOutcome(
                        target, None, False, UnknownDevice(f"Light {target} is not configured")
                    )
                ]
            records = [record]

        try:
            brightness, temperature = clamp_cct(brightness, temperature)
        except InvalidCommand as exc:
            _LOGGER.warning("Rejected command: %s", exc)
            return [
                CommandOutcome(record.address, record.name, False, exc)
                for record in records
            ]
        command = build_cct_command(brightness, temperature)

        desired = ReportedState(brightness, temperature)
        outcomes = [await self._send(record, command, desired) for record in records]
        self._emit_status()
        return outcomes

    async def set_power(
        self,
        target: str | None,
        on: bool,
        brightness: float = DEFAULT_ON_BRIGHTNESS,
        temperature: float = DEFAULT_TEMPERATURE,
    ) -> list[CommandOutcome]:
        """Switch lights on at *brightness* or off (brightness 0)."""
        if not on:
            return await self.set_command(target, BRIGHTNESS_MIN, DEFAULT_TEMPERATURE)
        return await self.set_command(target, brightness, temperature)

    def get_status(self) -> StatusSnapshot:
        """Return a snapshot of every configured light.  Never does I/O."""
        return StatusSnapshot.capture(list(self._records.values()))

    async def shutdown(self) -> None:
        """Stop all background work and disconnect every connected light."""
        if self._closing:
            return
        self._closing = True
        _LOGGER.info("Shutting down light manager")

        self._monitor.stop()
        await self._scheduler.close()
        cleanups = list(self._cleanup_tasks)
        if cleanups:
            await asyncio.gather(*cleanups, return_exceptions=True)

        for record in self._records.values():
            record.unwatch_link()
            if not record.connected or record.handle is None:
                continue
            try:
                await asyncio.wait_for(
                    record.handle.disconnect(), timeout=self._config.disconnect_timeout
                )
                _LOGGER.info("Disconnected from %s", record.name)
            except Exception:
                _LOGGER.debug("Failed to disconnect %s", record.name, exc_info=True)
            record.mark_disconnected()

        self._emit_status()

    async def __aenter__(self) -> "LightManager":
        await self.initialize()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.shutdown()

    # ── Connect sequences ──────────────────────────────────────────

    async def _startup_connect(self, record: DeviceRecord, delay: float) -> None:
        try:
            if delay > 0:
                await asyncio.sleep(delay)
            await self._gated_connect(record)
        finally:
            record.busy = False

    async def _gated_connect(self, record: DeviceRecord) -> None:
        try:
            async with self._gate:
                await self._connect(record)
        except Exception:
            _LOGGER.exception("Connect sequence for %s failed unexpectedly", record.name)
            self._demote(record)

    async def _reconnect(self, address: str) -> None:
        record = self._records[address]
        if self._closing or record.connected or record.busy:
            return
        record.busy = True
        try:
            if not record.usable_handle:
                handle = await self._rediscover(record)
                if handle is None:
                    self._scheduler.schedule(address)
                    return
                if self._closing or record.connected:
                    return
                record.replace_handle(handle)
            await self._gated_connect(record)
        finally:
            record.busy = False

    async def _rediscover(self, record: DeviceRecord) -> LightHandle | None:
        _LOGGER.info("Rescanning for %s", record.name)
        try:
            found = await self._scanner.scan(
                self._config.reconnect_scan_timeout, [record.address]
            )
        except DiscoveryFailure as exc:
            _LOGGER.info("Rescan for %s failed: %s", record.name, exc)
            found = []

        handle = next((h for h in found if h.address == record.address), None)
        if handle is None:
            _LOGGER.info("%s not found in scan", record.name)
            if record.state is not ConnectionState.UNRESOLVED and not record.connected:
                record.mark_unresolved()
                self._emit_status()
        return handle

    async def _connect(self, record: DeviceRecord) -> bool:
        """Run one connect sequence.  The caller holds a gate permit."""
        handle = record.handle
        if self._closing or handle is None:
            return False
        if record.connected:
            return True

        record.mark_connecting()
        self._emit_status()
        _LOGGER.info("Connecting to %s", record.name)
        try:
            await asyncio.wait_for(handle.connect(), timeout=self._config.connect_timeout)
        except (ConnectFailure, asyncio.TimeoutError) as exc:
            _LOGGER.warning(
                "Failed to connect to %s: %s", record.name, exc or "connect timed out"
            )
            await self._discard_connection(handle)
            record.handle_stale = True
            self._demote(record)
            return False

        if self._closing:
            await self._discard_connection(handle)
            record.mark_disconnected()
            return False

        record.watch_link(
            handle.on_link_dropped(
                functools.partial(self._on_link_dropped, record.address, handle)
            )
        )
        try:
            await handle.subscribe(functools.partial(self._on_notification, record.address))
        except Exception:
            _LOGGER.debug("%s: notifications unavailable", record.name, exc_info=True)

        if not handle.is_connected:
            _LOGGER.warning("%s dropped during setup", record.name)
            self._demote(record)
            return False

        record.mark_connected()
        if handle.rssi is not None:
            record.rssi = handle.rssi
        self._scheduler.cancel(record.address)
        _LOGGER.info("%s connected", record.name)
        self._emit_status()
        return True

    async def _send(
        self, record: DeviceRecord, command: bytes, desired: ReportedState
    ) -> CommandOutcome:
        handle = record.handle
        if not record.connected or handle is None:
            return CommandOutcome(
                record.address,
                record.name,
                False,
                NotConnected(f"{record.name} is not connected"),
            )
        try:
            await asyncio.wait_for(handle.write(command), timeout=self._config.write_timeout)
        except (WriteFailure, asyncio.TimeoutError) as exc:
            error = (
                exc
                if isinstance(exc, WriteFailure)
                else WriteFailure(f"{record.name}: write timed out")
            )
            _LOGGER.warning("Failed to send command to %s: %s", record.name, error)
            if record.handle is handle and record.connected:
                self._demote(record, notify=False)
            return CommandOutcome(record.address, record.name, False, error)

        if record.connected:
            record.reported = desired
        return CommandOutcome(record.address, record.name, True)

    # ── Failure handling ───────────────────────────────────────────

    def _demote(self, record: DeviceRecord, notify: bool = True) -> None:
        """Move *record* to DISCONNECTED and make sure a retry is pending."""
        record.unwatch_link()
        handle = record.handle
        if handle is not None and handle.is_connected:
            task = asyncio.ensure_future(self._discard_connection(handle))
            self._cleanup_tasks.add(task)
            task.add_done_callback(self._cleanup_tasks.discard)
        record.mark_disconnected()
        if notify:
            self._emit_status()
        if not self._closing and not self._scheduler.pending(record.address):
            self._scheduler.schedule(record.address)

    async def _discard_connection(self, handle: LightHandle) -> None:
        try:
            await asyncio.wait_for(
                handle.disconnect(), timeout=self._config.disconnect_timeout
            )
        except Exception:
            _LOGGER.debug("Cleanup disconnect of %s failed", handle.name, exc_info=True)

    def _on_link_dropped(self, address: str, handle: LightHandle) -> None:
        record = self._records[address]
        if self._closing or record.handle is not handle or not record.connected:
            return
        _LOGGER.warning("%s disconnected", record.name)
        self._demote(record)

    def _on_probe_failed(self, record: DeviceRecord, exc: Exception) -> None:
        self._demote(record)

    def _on_notification(self, address: str, data: bytes) -> None:
        record = self._records[address]
        parsed = parse_cct_notification(data)
        if parsed is None:
            _LOGGER.debug("%s: ignoring notification %s", record.name, data.hex())
            return
        if not record.connected:
            return
        reported = ReportedState(*parsed)
        if reported == record.reported:
            return
        record.reported = reported
        _LOGGER.info(
            "%s state changed: %d%% @ %dK",
            record.name,
            reported.brightness,
            reported.temperature,
        )
        self._emit_status()

    # ── Observers ──────────────────────────────────────────────────

    def _emit_status(self) -> None:
        snapshot = self.get_status()
        _LOGGER.debug("Status: %s", snapshot.summary())
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                _LOGGER.exception("Status listener failed")
