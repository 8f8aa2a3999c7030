"""Tests for command module — CCT command encoding."""

import pytest

from bleak_light_manager.command import (
    COMMAND_LENGTH,
    build_cct_command,
    checksum,
    clamp_cct,
    decode_temperature,
    encode_temperature,
    parse_cct_notification,
)
from bleak_light_manager.const import CCT_MAX, CCT_MIN
from bleak_light_manager.exceptions import InvalidCommand


def test_checksum_truncates_to_byte():
    assert checksum([0x78, 0x87, 0x02, 100, 85]) == (0x78 + 0x87 + 0x02 + 100 + 85) & 0xFF
    assert checksum(b"") == 0


def test_build_cct_command_layout():
    command = build_cct_command(50, 5600)
    assert len(command) == COMMAND_LENGTH
    assert command[:3] == bytes([0x78, 0x87, 0x02])
    assert command[3] == 50
    assert command[4] == encode_temperature(5600)
    assert command[5] == checksum(command[:5])


def test_out_of_range_values_are_clamped():
    assert clamp_cct(150, 9000) == (100, CCT_MAX)
    assert clamp_cct(-5, 1000) == (0, CCT_MIN)
    command = build_cct_command(150, 9000)
    assert command[3] == 100
    assert command[4] == 85
    assert command[5] == 186


def test_clamp_rounds_half_up():
    assert clamp_cct(49.5, 5600.5) == (50, 5601)


def test_nan_is_rejected():
    with pytest.raises(InvalidCommand, match="brightness"):
        clamp_cct(float("nan"), 5600)
    with pytest.raises(ValueError, match="temperature"):
        build_cct_command(50, float("nan"))


def test_infinities_clamp_to_bounds():
    assert clamp_cct(float("inf"), float("-inf")) == (100, CCT_MIN)
    assert build_cct_command(float("-inf"), float("inf"))[3:5] == bytes([0, 85])


def test_temperature_byte_bounds():
    assert encode_temperature(CCT_MIN) == 32
    assert encode_temperature(CCT_MAX) == 85


@pytest.mark.parametrize("kelvin", [3200, 4300, 5600, 6500, 8500])
def test_temperature_survives_quantisation(kelvin):
    step = (CCT_MAX - CCT_MIN) / 53
    assert abs(decode_temperature(encode_temperature(kelvin)) - kelvin) <= step


def test_clamped_command_decodes_to_clamped_values():
    command = build_cct_command(150, 9000)
    assert parse_cct_notification(command) == (100, CCT_MAX)


def test_parse_rejects_short_or_foreign_frames():
    assert parse_cct_notification(b"\x78\x87\x02") is None
    assert parse_cct_notification(bytes([0x78, 0x86, 0x02, 10, 40, 0])) is None
