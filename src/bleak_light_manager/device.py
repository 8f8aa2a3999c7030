"""Per-light state and the immutable status snapshots built from it.

A :class:`DeviceRecord` exists for every configured light for the whole
process lifetime.  Only the orchestrator and its helpers mutate it, and
they do so through the ``mark_*`` transitions so that the reported
state reset and timer ownership rules live in one place.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any

from .const import DEFAULT_BRIGHTNESS, DEFAULT_TEMPERATURE, DeviceConfig

if TYPE_CHECKING:
    from .adapter import LightHandle


class ConnectionState(str, Enum):
    """Lifecycle states of a light."""

    UNRESOLVED = "unresolved"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass(frozen=True)
class ReportedState:
    """Last known brightness (0-100) and colour temperature (K)."""

    brightness: int = DEFAULT_BRIGHTNESS
    temperature: int = DEFAULT_TEMPERATURE


@dataclass
class DeviceRecord:
    """Mutable state of one configured light."""

    address: str
    name: str
    handle: LightHandle | None = None
    handle_stale: bool = False
    state: ConnectionState = ConnectionState.UNRESOLVED
    busy: bool = False
    reported: ReportedState = field(default_factory=ReportedState)
    rssi: int | None = None
    reconnect_timer: asyncio.TimerHandle | None = None
    _unwatch_link: Callable[[], None] | None = field(default=None, repr=False)

    @classmethod
    def from_config(cls, config: DeviceConfig) -> DeviceRecord:
        return cls(address=config.key, name=config.name)

    @property
    def connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def usable_handle(self) -> bool:
        """Whether the current handle can be connected without rediscovery."""
        return self.handle is not None and not self.handle_stale

    def replace_handle(self, handle: LightHandle) -> None:
        """Swap in a freshly discovered handle.

        The link-drop subscription of the old handle is torn down first so
        no stale listener survives the swap.
        """
        self.unwatch_link()
        self.handle = handle
        self.handle_stale = False
        if handle.rssi is not None:
            self.rssi = handle.rssi

    def watch_link(self, unsubscribe: Callable[[], None]) -> None:
        """Own a new link-drop subscription, dropping the previous one."""
        self.unwatch_link()
        self._unwatch_link = unsubscribe

    def unwatch_link(self) -> None:
        if self._unwatch_link is not None:
            unsubscribe, self._unwatch_link = self._unwatch_link, None
            unsubscribe()

    def mark_connecting(self) -> None:
        self.busy = True
        self.state = ConnectionState.CONNECTING

    def mark_connected(self) -> None:
        self.state = ConnectionState.CONNECTED
        self.handle_stale = False

    def mark_disconnected(self) -> None:
        self.state = ConnectionState.DISCONNECTED
        self.reported = ReportedState()

    def mark_unresolved(self) -> None:
        self.state = ConnectionState.UNRESOLVED
        self.reported = ReportedState()

    def status(self) -> DeviceStatus:
        return DeviceStatus(
            name=self.name,
            address=self.address,
            connected=self.connected,
            state=self.state,
            brightness=self.reported.brightness,
            temperature=self.reported.temperature,
            rssi=self.rssi,
        )


@dataclass(frozen=True)
class DeviceStatus:
    """One light in a :class:`StatusSnapshot`."""

    name: str
    address: str
    connected: bool
    state: ConnectionState
    brightness: int
    temperature: int
    rssi: int | None

    def as_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "address": self.address,
            "connected": self.connected,
            "state": self.state.value,
            "brightness": self.brightness,
            "temperature": self.temperature,
            "rssi": self.rssi,
        }


@dataclass(frozen=True)
class StatusSnapshot:
    """Point-in-time view of every configured light, in configured order."""

    timestamp: datetime
    lights: tuple[DeviceStatus, ...]

    @classmethod
    def capture(cls, records: list[DeviceRecord]) -> StatusSnapshot:
        return cls(
            timestamp=datetime.now(timezone.utc),
            lights=tuple(record.status() for record in records),
        )

    def get(self, address: str) -> DeviceStatus | None:
        key = address.lower()
        for light in self.lights:
            if light.address == key:
                return light
        return None

    def summary(self) -> str:
        """Compact one-line summary for logs."""
        return " | ".join(
            f"{light.name}: {'on' if light.connected else 'off'} "
            f"{light.brightness}%@{light.temperature}K"
            for light in self.lights
        )

    def as_dict(self) -> dict[str, Any]:
        """JSON form.  ``light_1`` .. ``light_N`` mirror each light's ``connected``."""
        data: dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "lights": [light.as_dict() for light in self.lights],
        }
        for index, light in enumerate(self.lights, start=1):
            data[f"light_{index}"] = light.connected
        return data
