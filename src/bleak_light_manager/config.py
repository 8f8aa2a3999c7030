"""Load the light list and manager tunables from a JSON file.

Expected layout::

    {
        "lights": [
            {"address": "AA:BB:CC:DD:EE:01", "name": "Key light"},
            {"address": "AA:BB:CC:DD:EE:02", "name": "Fill light"}
        ],
        "settings": {
            "reconnect_interval": 2.0,
            "connect_concurrency": 2
        }
    }

``settings`` is optional; every key must be a
:class:`~bleak_light_manager.const.ManagerConfig` field.
"""

from __future__ import annotations

import json
import math
from dataclasses import fields
from pathlib import Path
from typing import Any

from .const import DeviceConfig, ManagerConfig

_SETTING_NAMES = frozenset(f.name for f in fields(ManagerConfig))
_DEFAULTS = ManagerConfig()


def parse_lights(raw: Any) -> list[DeviceConfig]:
    """Parse the ``lights`` section into device configs."""
    if not isinstance(raw, list) or not raw:
        raise ValueError("'lights' must be a non-empty list")
    devices: list[DeviceConfig] = []
    seen: set[str] = set()
    for index, entry in enumerate(raw):
        if not isinstance(entry, dict):
            raise ValueError(f"lights[{index}] must be an object")
        address = entry.get("address") or entry.get("mac")
        if not isinstance(address, str) or not address.strip():
            raise ValueError(f"lights[{index}] is missing an address")
        name = entry.get("name") or address
        device = DeviceConfig(address=address.strip(), name=str(name))
        if device.key in seen:
            raise ValueError(f"lights[{index}]: duplicate address {address}")
        seen.add(device.key)
        devices.append(device)
    return devices


def parse_settings(raw: Any) -> ManagerConfig:
    """Parse the ``settings`` section into a :class:`ManagerConfig`."""
    if raw is None:
        return ManagerConfig()
    if not isinstance(raw, dict):
        raise ValueError("'settings' must be an object")
    unknown = sorted(set(raw) - _SETTING_NAMES)
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(unknown)}")
    for name, value in raw.items():
        _check_setting(name, value)
    config = ManagerConfig(**raw)
    if config.connect_concurrency < 1:
        raise ValueError("connect_concurrency must be >= 1")
    return config


def _check_setting(name: str, value: Any) -> None:
    default = getattr(_DEFAULTS, name)
    if isinstance(value, bool):
        raise ValueError(f"{name} must not be a boolean")
    if default is None or isinstance(default, str):
        if value is not None and not isinstance(value, str):
            raise ValueError(f"{name} must be a string or null, got {value!r}")
    elif isinstance(default, int):
        if not isinstance(value, int):
            raise ValueError(f"{name} must be an integer, got {value!r}")
    elif not isinstance(value, (int, float)) or not math.isfinite(value):
        raise ValueError(f"{name} must be a finite number, got {value!r}")


def load_config(path: str | Path) -> tuple[list[DeviceConfig], ManagerConfig]:
    """Read *path* and return ``(devices, manager_config)``.

    Raises
    ------
    ValueError
        If the file is not valid JSON or does not match the layout.
    OSError
        If the file cannot be read.
    """
    text = Path(path).read_text(encoding="utf-8")
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be an object")
    return parse_lights(data.get("lights")), parse_settings(data.get("settings"))
