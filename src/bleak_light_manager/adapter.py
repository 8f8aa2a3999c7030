"""Bleak-backed radio adapter: discovery and per-light handles.

:class:`BleakRadioAdapter` runs scans.  A scan listens for
advertisements through a ``BleakScanner`` detection callback and stops
at whichever comes first:

- the scan duration elapses, or
- every target address has been seen (early stop).

Each light found is wrapped in a :class:`LightHandle`, which owns the
``BleakClient`` once connected and exposes the small set of operations
the orchestrator needs: connect, disconnect, write, subscribe, a
liveness probe, and a one-shot link-drop event.

All bleak failures are converted to the exceptions in
:mod:`bleak_light_manager.exceptions` at this boundary.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from bleak import BleakClient, BleakScanner
from bleak.backends.device import BLEDevice
from bleak.backends.scanner import AdvertisementData
from bleak.exc import BleakBluetoothNotAvailableError, BleakError
from bleak_retry_connector import BleakAbortedError, BleakNotFoundError

from .connection import establish_connection
from .const import (
    DEFAULT_MAX_ATTEMPTS,
    DISCONNECT_TIMEOUT,
    IS_LINUX,
    LIGHT_NAME_PATTERNS,
    NOTIFY_CHAR_UUID,
    RSSI_THRESHOLD,
    SCAN_HARD_TIMEOUT_BUFFER,
    WRITE_CHAR_UUID,
    normalize_address,
)
from .exceptions import (
    AdapterUnavailable,
    ConnectFailure,
    DiscoveryFailure,
    ProbeFailure,
    WriteFailure,
)

_LOGGER = logging.getLogger(__name__)

_CONNECT_ERRORS = (
    BleakError,
    BleakAbortedError,
    BleakNotFoundError,
    asyncio.TimeoutError,
    EOFError,
    BrokenPipeError,
)

_IO_ERRORS = (BleakError, asyncio.TimeoutError, EOFError, BrokenPipeError)


def is_light_name(name: str | None) -> bool:
    """Whether an advertised name looks like a supported light."""
    if not name:
        return False
    upper = name.upper()
    return any(pattern in upper for pattern in LIGHT_NAME_PATTERNS)


class LightHandle:
    """Adapter-level reference to one discovered light.

    Parameters
    ----------
    device:
        The ``BLEDevice`` reported by the scanner.
    rssi:
        Signal strength of the advertisement that found it.
    name:
        Advertised name, if any.
    max_attempts:
        Attempts made by each :meth:`connect` call.
    disconnect_timeout:
        Maximum seconds :meth:`disconnect` waits for the adapter.
    """

    def __init__(
        self,
        device: BLEDevice,
        rssi: int | None = None,
        name: str | None = None,
        *,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        disconnect_timeout: float = DISCONNECT_TIMEOUT,
    ) -> None:
        self._device = device
        self.rssi = rssi
        self.name = name or device.name or "Unknown light"
        self._max_attempts = max_attempts
        self._disconnect_timeout = disconnect_timeout
        self._client: BleakClient | None = None
        self._link_callbacks: list[Callable[[], None]] = []

    def __repr__(self) -> str:
        return f"<LightHandle {self.name} ({self.address}) rssi={self.rssi}>"

    @property
    def address(self) -> str:
        return normalize_address(self._device.address)

    @property
    def device(self) -> BLEDevice:
        return self._device

    @property
    def is_connected(self) -> bool:
        return self._client is not None and self._client.is_connected

    async def connect(self) -> None:
        """Connect and resolve the light's characteristics.

        Raises
        ------
        ConnectFailure
            If every attempt failed.
        """
        if self.is_connected:
            return
        try:
            self._client = await establish_connection(
                BleakClient,
                self._device,
                self.name,
                max_attempts=self._max_attempts,
                disconnected_callback=self._on_client_disconnected,
            )
        except _CONNECT_ERRORS as exc:
            self._client = None
            raise ConnectFailure(f"{self.name}: {exc or type(exc).__name__}") from exc

    async def disconnect(self) -> None:
        """Disconnect, swallowing adapter errors.  No-op when not connected."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await asyncio.wait_for(client.disconnect(), timeout=self._disconnect_timeout)
        except _IO_ERRORS:
            _LOGGER.debug("%s: disconnect failed", self.name, exc_info=True)

    async def write(self, data: bytes) -> None:
        """Write a command to the light's write characteristic."""
        client = self._require_client(WriteFailure)
        try:
            await client.write_gatt_char(WRITE_CHAR_UUID, data, response=False)
        except _IO_ERRORS as exc:
            raise WriteFailure(f"{self.name}: {exc or type(exc).__name__}") from exc

    async def subscribe(self, callback: Callable[[bytes], None]) -> None:
        """Forward notifications from the light to *callback*."""
        client = self._require_client(BleakError)

        def _on_notify(_sender: Any, data: bytearray) -> None:
            callback(bytes(data))

        await client.start_notify(NOTIFY_CHAR_UUID, _on_notify)

    async def read_probe(self) -> bytes:
        """Read the notify characteristic to prove the link is alive."""
        client = self._require_client(ProbeFailure)
        try:
            return bytes(await client.read_gatt_char(NOTIFY_CHAR_UUID))
        except _IO_ERRORS as exc:
            raise ProbeFailure(f"{self.name}: {exc or type(exc).__name__}") from exc

    def on_link_dropped(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a one-shot callback fired when the link drops.

        Returns a function that removes the callback again.
        """
        self._link_callbacks.append(callback)

        def _remove() -> None:
            try:
                self._link_callbacks.remove(callback)
            except ValueError:
                pass

        return _remove

    def _require_client(self, error: type[Exception]) -> BleakClient:
        if self._client is None or not self._client.is_connected:
            raise error(f"{self.name}: not connected")
        return self._client

    def _on_client_disconnected(self, client: BleakClient) -> None:
        # Drops during a connect attempt or after our own disconnect are not link drops
        if self._client is None or client is not self._client:
            return
        self._client = None
        callbacks, self._link_callbacks = self._link_callbacks, []
        for callback in callbacks:
            try:
                callback()
            except Exception:
                _LOGGER.exception("%s: link-drop callback failed", self.name)


class BleakRadioAdapter:
    """Discover lights with ``BleakScanner``.

    Parameters
    ----------
    adapter:
        Adapter name (e.g. ``"hci0"``).  Only used on Linux.
    rssi_threshold:
        Advertisements weaker than this are ignored.
    max_attempts:
        Connect attempts for the handles this adapter creates.
    disconnect_timeout:
        Disconnect timeout for the handles this adapter creates.
    **scanner_kwargs:
        Additional keyword arguments for ``BleakScanner``.
    """

    def __init__(
        self,
        adapter: str | None = None,
        *,
        rssi_threshold: int = RSSI_THRESHOLD,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        disconnect_timeout: float = DISCONNECT_TIMEOUT,
        **scanner_kwargs: Any,
    ) -> None:
        self._adapter = adapter
        self._rssi_threshold = rssi_threshold
        self._max_attempts = max_attempts
        self._disconnect_timeout = disconnect_timeout
        self._scanner_kwargs = scanner_kwargs

    async def discover(
        self, timeout: float, targets: set[str] | None = None
    ) -> list[LightHandle]:
        """Scan for lights.

        Parameters
        ----------
        timeout:
            Scan duration in seconds.
        targets:
            Normalised addresses.  The scan stops as soon as all of them
            have been seen.  Target addresses are accepted whatever name
            they advertise.

        Raises
        ------
        AdapterUnavailable
            If Bluetooth is missing or powered off.
        DiscoveryFailure
            For any other scanner error.
        """
        seen: dict[str, tuple[BLEDevice, AdvertisementData]] = {}
        all_found = asyncio.Event()
        wanted = set(targets) if targets else None

        def _on_detect(device: BLEDevice, adv: AdvertisementData) -> None:
            if adv.rssi is not None and adv.rssi < self._rssi_threshold:
                return
            address = normalize_address(device.address)
            is_target = wanted is not None and address in wanted
            if not is_target and not is_light_name(adv.local_name or device.name):
                return
            if address not in seen:
                _LOGGER.debug(
                    "Found %s (%s) rssi=%s",
                    adv.local_name or device.name,
                    address,
                    adv.rssi,
                )
            seen[address] = (device, adv)
            if wanted and wanted.issubset(seen):
                all_found.set()

        kwargs: dict[str, Any] = dict(self._scanner_kwargs)
        if IS_LINUX and self._adapter:
            kwargs.setdefault("adapter", self._adapter)
        scanner = BleakScanner(detection_callback=_on_detect, **kwargs)

        try:
            await asyncio.wait_for(scanner.start(), timeout=SCAN_HARD_TIMEOUT_BUFFER)
        except BleakBluetoothNotAvailableError as exc:
            raise AdapterUnavailable(str(exc)) from exc
        except (BleakError, asyncio.TimeoutError, OSError) as exc:
            raise DiscoveryFailure(f"Scan failed to start: {exc}") from exc

        try:
            await asyncio.wait_for(all_found.wait(), timeout=timeout)
            _LOGGER.debug("All %d target(s) seen, stopping scan early", len(wanted or ()))
        except asyncio.TimeoutError:
            pass
        finally:
            try:
                await scanner.stop()
            except BleakError:
                _LOGGER.debug("Failed to stop scanner", exc_info=True)

        return [
            LightHandle(
                device,
                adv.rssi,
                adv.local_name,
                max_attempts=self._max_attempts,
                disconnect_timeout=self._disconnect_timeout,
            )
            for device, adv in seen.values()
        ]
