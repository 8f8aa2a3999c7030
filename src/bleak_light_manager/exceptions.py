"""Exceptions raised by bleak-light-manager.

The bleak layer converts ``BleakError`` and friends into these so that
the orchestrator only has to know about one failure vocabulary.
"""

from __future__ import annotations


class LightManagerError(Exception):
    """Base class for all bleak-light-manager errors."""


class DiscoveryFailure(LightManagerError):
    """A scan failed or timed out.  Retried by the reconnect scheduler."""


class AdapterUnavailable(DiscoveryFailure):
    """The Bluetooth adapter is missing or powered off."""


class ConnectFailure(LightManagerError):
    """Connecting to a light failed or timed out."""


class WriteFailure(LightManagerError):
    """A connected light rejected a command write."""


class ProbeFailure(LightManagerError):
    """A liveness probe failed."""


class NotConnected(LightManagerError):
    """A command targeted a light without an active connection."""


class UnknownDevice(LightManagerError):
    """A command targeted an address that is not configured."""


class InvalidCommand(LightManagerError, ValueError):
    """Command values that cannot be encoded, such as NaN."""
