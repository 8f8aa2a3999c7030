"""bleak-light-manager: Keep a fixed set of BLE CCT lights connected.

Discovers lights with a single-flight scan, connects them through a
bounded admission gate, detects dead links from both disconnect events
and liveness probes, and retries with deduplicated reconnect timers.
"""

from __future__ import annotations

__version__ = "0.1.0"

from .adapter import BleakRadioAdapter, LightHandle, is_light_name
from .command import (
    build_cct_command,
    checksum,
    clamp_cct,
    decode_temperature,
    encode_temperature,
    parse_cct_notification,
)
from .config import load_config
from .connection import establish_connection, validate_light_services
from .const import (
    CCT_MAX,
    CCT_MIN,
    DEFAULT_TEMPERATURE,
    IS_LINUX,
    DeviceConfig,
    ManagerConfig,
)
from .device import (
    ConnectionState,
    DeviceRecord,
    DeviceStatus,
    ReportedState,
    StatusSnapshot,
)
from .exceptions import (
    AdapterUnavailable,
    ConnectFailure,
    DiscoveryFailure,
    LightManagerError,
    NotConnected,
    ProbeFailure,
    UnknownDevice,
    WriteFailure,
)
from .gate import AdmissionGate
from .manager import ALL_TARGETS, CommandOutcome, LightManager
from .monitor import PollMonitor
from .scanner import SingleFlightScanner
from .scheduler import ReconnectScheduler
from .server import LightControlServer

__all__ = [
    # Orchestrator
    "LightManager",
    "CommandOutcome",
    "ALL_TARGETS",
    # Lifecycle building blocks
    "AdmissionGate",
    "SingleFlightScanner",
    "ReconnectScheduler",
    "PollMonitor",
    # Device state
    "ConnectionState",
    "DeviceRecord",
    "DeviceStatus",
    "ReportedState",
    "StatusSnapshot",
    # Radio layer
    "BleakRadioAdapter",
    "LightHandle",
    "is_light_name",
    "establish_connection",
    "validate_light_services",
    # Command encoding
    "build_cct_command",
    "checksum",
    "clamp_cct",
    "decode_temperature",
    "encode_temperature",
    "parse_cct_notification",
    # Configuration
    "DeviceConfig",
    "ManagerConfig",
    "load_config",
    # Transport
    "LightControlServer",
    # Errors
    "LightManagerError",
    "DiscoveryFailure",
    "AdapterUnavailable",
    "ConnectFailure",
    "WriteFailure",
    "ProbeFailure",
    "NotConnected",
    "UnknownDevice",
    # Constants
    "CCT_MAX",
    "CCT_MIN",
    "DEFAULT_TEMPERATURE",
    "IS_LINUX",
]
