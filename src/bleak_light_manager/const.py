"""Constants and configuration dataclasses for bleak-light-manager."""

from __future__ import annotations

import platform
from dataclasses import dataclass

IS_LINUX = platform.system() == "Linux"

# GATT layout shared by the Neewer CCT lights.
WRITE_CHAR_UUID = "69400002-b5a3-f393-e0a9-e50e24dcca99"
NOTIFY_CHAR_UUID = "69400003-b5a3-f393-e0a9-e50e24dcca99"

# Advertised name fragments that identify a light during discovery.
LIGHT_NAME_PATTERNS = (
    "NEEWER",
    "NW",
    "SL-",
    "RGB",
    "SNL",
    "GL1",
    "BH30S",
    "CB60",
    "CL124",
    "SRP",
    "WRP",
    "ZRP",
)

# Value ranges accepted by the CCT command.
BRIGHTNESS_MIN = 0
BRIGHTNESS_MAX = 100
CCT_MIN = 3200
CCT_MAX = 8500

# Reported state after a drop, when the physical state is unknown.
DEFAULT_BRIGHTNESS = 0
DEFAULT_TEMPERATURE = 5600

# Brightness used when a light is switched on without one.
DEFAULT_ON_BRIGHTNESS = 50

# How long to wait for a disconnect to complete before giving up.
DISCONNECT_TIMEOUT = 5.0

# Default number of connect attempts inside one connect sequence.
DEFAULT_MAX_ATTEMPTS = 2

# Extra seconds added to a scan duration to form its hard timeout.
SCAN_HARD_TIMEOUT_BUFFER = 5.0

# Weakest advertisement still considered reachable.
RSSI_THRESHOLD = -90


def normalize_address(address: str) -> str:
    """Return the canonical (lower case) form of a device address."""
    return address.strip().lower()


@dataclass(frozen=True)
class DeviceConfig:
    """A configured light.

    Parameters
    ----------
    address:
        Hardware address of the light.  Compared case-insensitively.
    name:
        Display name used in logs and status snapshots.
    """

    address: str
    name: str

    @property
    def key(self) -> str:
        """Return the normalised address used as the device table key."""
        return normalize_address(self.address)


@dataclass
class ManagerConfig:
    """Tunables for :class:`~bleak_light_manager.manager.LightManager`.

    None of these values are protocol requirements.  Shorter intervals
    give faster recovery at the cost of more radio load.

    Parameters
    ----------
    initial_scan_timeout:
        Duration of the startup scan.  The scan stops early once every
        configured light has been seen.
    reconnect_scan_timeout:
        Duration of the rediscovery scan run by a reconnect.
    reconnect_interval:
        Delay between a drop (or failed attempt) and the next reconnect.
    poll_interval:
        Seconds between liveness sweeps.
    probe_timeout:
        Maximum seconds a single liveness probe may take.
    sweep_interval:
        Seconds between backstop sweeps that re-arm reconnects for every
        device that is neither connected nor busy.
    connect_concurrency:
        Admission gate capacity: how many connect sequences may run at
        the same time against the adapter.
    connect_stagger:
        Startup delay step.  The i-th discovered light waits
        ``i * connect_stagger`` seconds before asking for a permit.
    connect_timeout:
        Hard ceiling for one connect sequence, including its retries.
    connect_attempts:
        Attempts made by the outer retry loop inside one connect sequence.
    write_timeout:
        Maximum seconds a command write may take.
    disconnect_timeout:
        Maximum seconds a disconnect may take.
    rssi_threshold:
        Advertisements weaker than this are ignored during discovery.
    adapter:
        Adapter name (e.g. ``"hci0"``) to scan on.  ``None`` uses the
        platform default.
    """

    initial_scan_timeout: float = 3.0
    reconnect_scan_timeout: float = 4.0
    reconnect_interval: float = 10.0
    poll_interval: float = 5.0
    probe_timeout: float = 5.0
    sweep_interval: float = 3600.0
    connect_concurrency: int = 2
    connect_stagger: float = 0.15
    connect_timeout: float = 25.0
    connect_attempts: int = DEFAULT_MAX_ATTEMPTS
    write_timeout: float = 5.0
    disconnect_timeout: float = DISCONNECT_TIMEOUT
    rssi_threshold: int = RSSI_THRESHOLD
    adapter: str | None = None
