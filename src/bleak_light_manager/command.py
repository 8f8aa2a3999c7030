"""Command encoder for Neewer CCT lights.

Wire format of the only command this package sends::

    [0x78][0x87][0x02][brightness][temp_byte][checksum]

``temp_byte`` maps 3200-8500 K linearly onto 32-85 and ``checksum`` is
the sum of the preceding bytes truncated to 8 bits.  The light echoes
the same layout back as a notification when its state changes.
"""

from __future__ import annotations

import math

from .const import BRIGHTNESS_MAX, BRIGHTNESS_MIN, CCT_MAX, CCT_MIN
from .exceptions import InvalidCommand

COMMAND_PREFIX = 0x78
MODE_CCT = 0x87
CCT_PAYLOAD_LENGTH = 0x02

TEMP_BYTE_MIN = 32
TEMP_BYTE_MAX = 85

_TEMP_SPAN = CCT_MAX - CCT_MIN
_TEMP_BYTE_SPAN = TEMP_BYTE_MAX - TEMP_BYTE_MIN

COMMAND_LENGTH = 6


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def checksum(data: bytes | bytearray | list[int]) -> int:
    """Return the 8-bit summed checksum of *data*."""
    return sum(data) & 0xFF


def _clamp(value: float, low: int, high: int, label: str) -> int:
    if math.isnan(value):
        raise InvalidCommand(f"{label} must be a number, got NaN")
    # Infinities land on the bounds before rounding
    return _round_half_up(max(low, min(high, value)))


def clamp_cct(brightness: float, temperature: float) -> tuple[int, int]:
    """Round and clamp a brightness/temperature pair to the device range.

    Raises
    ------
    InvalidCommand
        If either value is NaN.
    """
    return (
        _clamp(brightness, BRIGHTNESS_MIN, BRIGHTNESS_MAX, "brightness"),
        _clamp(temperature, CCT_MIN, CCT_MAX, "temperature"),
    )


def encode_temperature(temperature: int) -> int:
    """Map a clamped Kelvin value onto the 32-85 temperature byte."""
    return _round_half_up((temperature - CCT_MIN) / _TEMP_SPAN * _TEMP_BYTE_SPAN + TEMP_BYTE_MIN)


def decode_temperature(temp_byte: int) -> int:
    """Map a temperature byte back to Kelvin."""
    return _round_half_up((temp_byte - TEMP_BYTE_MIN) / _TEMP_BYTE_SPAN * _TEMP_SPAN + CCT_MIN)


def build_cct_command(brightness: float, temperature: float) -> bytes:
    """Build a CCT command.  Out-of-range values are clamped first."""
    brightness, temperature = clamp_cct(brightness, temperature)
    body = [
        COMMAND_PREFIX,
        MODE_CCT,
        CCT_PAYLOAD_LENGTH,
        brightness,
        encode_temperature(temperature),
    ]
    return bytes(body + [checksum(body)])


def parse_cct_notification(data: bytes | bytearray) -> tuple[int, int] | None:
    """Decode a CCT state notification into ``(brightness, temperature)``.

    Returns ``None`` for short frames and frames of any other mode.
    """
    if len(data) < 5:
        return None
    if data[0] != COMMAND_PREFIX or data[1] != MODE_CCT:
        return None
    return data[3], decode_temperature(data[4])
