"""Tests for const module."""

from bleak_light_manager.const import (
    CCT_MAX,
    CCT_MIN,
    DEFAULT_MAX_ATTEMPTS,
    DISCONNECT_TIMEOUT,
    DeviceConfig,
    ManagerConfig,
    normalize_address,
)


def test_manager_config_defaults():
    config = ManagerConfig()
    assert config.initial_scan_timeout == 3.0
    assert config.reconnect_scan_timeout == 4.0
    assert config.reconnect_interval == 10.0
    assert config.poll_interval == 5.0
    assert config.connect_concurrency == 2
    assert config.connect_stagger == 0.15
    assert config.connect_attempts == DEFAULT_MAX_ATTEMPTS
    assert config.disconnect_timeout == DISCONNECT_TIMEOUT
    assert config.adapter is None


def test_manager_config_custom():
    config = ManagerConfig(reconnect_interval=2.0, connect_concurrency=1, adapter="hci1")
    assert config.reconnect_interval == 2.0
    assert config.connect_concurrency == 1
    assert config.adapter == "hci1"


def test_normalize_address():
    assert normalize_address(" AA:BB:CC:DD:EE:FF ") == "aa:bb:cc:dd:ee:ff"


def test_device_config_key_is_case_insensitive():
    upper = DeviceConfig("AA:BB:CC:DD:EE:FF", "Key")
    lower = DeviceConfig("aa:bb:cc:dd:ee:ff", "Key")
    assert upper.key == lower.key == "aa:bb:cc:dd:ee:ff"


def test_cct_range():
    assert CCT_MIN == 3200
    assert CCT_MAX == 8500
