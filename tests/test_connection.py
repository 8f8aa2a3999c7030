"""Tests for connection module — the outer retry loop."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from bleak import BleakClient
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from bleak_retry_connector import BleakAbortedError, BleakNotFoundError

from bleak_light_manager.connection import (
    _get_device_lock,
    establish_connection,
    validate_light_services,
)


def _make_device(address="AA:BB:CC:DD:EE:FF", name="SL60"):
    return BLEDevice(address, name, {})


def _client_with_write_char(found=True):
    client = MagicMock(spec=BleakClient)
    client.address = "AA:BB:CC:DD:EE:FF"
    client.services = MagicMock()
    client.services.get_characteristic.return_value = object() if found else None
    client.disconnect = AsyncMock()
    return client


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_successful_connection(mock_brc):
    mock_client = _client_with_write_char()
    mock_brc.return_value = mock_client

    client = await establish_connection(BleakClient, _make_device(), "SL60", max_attempts=3)

    assert client is mock_client
    mock_brc.assert_called_once()
    assert mock_brc.call_args.kwargs["max_attempts"] == 1


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._RETRY_BACKOFF", 0)
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_retry_on_failure(mock_brc):
    mock_client = _client_with_write_char()
    mock_brc.side_effect = [BleakError("transient failure"), mock_client]

    client = await establish_connection(BleakClient, _make_device(), "SL60", max_attempts=3)

    assert client is mock_client
    assert mock_brc.call_count == 2


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._RETRY_BACKOFF", 0)
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_exhausted_attempts(mock_brc):
    mock_brc.side_effect = BleakError("always fails")

    with pytest.raises(BleakAbortedError, match="Failed to connect"):
        await establish_connection(BleakClient, _make_device(), "SL60", max_attempts=2)

    assert mock_brc.call_count == 2


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_not_found_is_not_retried(mock_brc):
    mock_brc.side_effect = BleakNotFoundError("gone")

    with pytest.raises(BleakNotFoundError):
        await establish_connection(BleakClient, _make_device(), "SL60", max_attempts=3)

    mock_brc.assert_called_once()


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_kwargs_passed_through(mock_brc):
    mock_brc.return_value = _client_with_write_char()
    callback = MagicMock()

    await establish_connection(
        BleakClient,
        _make_device(),
        "SL60",
        max_attempts=1,
        disconnected_callback=callback,
    )

    assert mock_brc.call_args.kwargs["disconnected_callback"] is callback


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_validate_connection_success(mock_brc):
    mock_client = MagicMock(spec=BleakClient)
    mock_brc.return_value = mock_client
    validator = AsyncMock(return_value=True)

    client = await establish_connection(
        BleakClient,
        _make_device(),
        "SL60",
        max_attempts=3,
        validate_connection=validator,
    )

    assert client is mock_client
    validator.assert_called_once_with(mock_client)


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._RETRY_BACKOFF", 0)
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_validate_connection_failure_retries(mock_brc):
    bad = _client_with_write_char(found=False)
    good = _client_with_write_char()
    mock_brc.side_effect = [bad, good]

    client = await establish_connection(BleakClient, _make_device(), "SL60", max_attempts=3)

    assert client is good
    bad.disconnect.assert_awaited_once()
    assert mock_brc.call_count == 2


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._RETRY_BACKOFF", 0)
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_validator_exception_counts_as_failure(mock_brc):
    bad = _client_with_write_char()
    mock_brc.return_value = bad
    validator = AsyncMock(side_effect=RuntimeError("boom"))

    with pytest.raises(BleakAbortedError, match="validation failed"):
        await establish_connection(
            BleakClient,
            _make_device(),
            "SL60",
            max_attempts=2,
            validate_connection=validator,
        )

    assert bad.disconnect.await_count == 2


@pytest.mark.asyncio
async def test_validate_light_services():
    assert await validate_light_services(_client_with_write_char())
    assert not await validate_light_services(_client_with_write_char(found=False))

    empty = _client_with_write_char()
    empty.services = None
    assert not await validate_light_services(empty)


def test_device_lock_is_shared_per_address():
    lock = _get_device_lock("aa:bb:cc:dd:ee:ff")
    assert _get_device_lock("AA:BB:CC:DD:EE:FF") is lock
    assert _get_device_lock("11:22:33:44:55:66") is not lock


@pytest.mark.asyncio
@patch("bleak_light_manager.connection._brc_establish_connection")
async def test_same_device_connects_are_serialized(mock_brc):
    state = {"active": 0, "peak": 0}

    async def connect(*args, **kwargs):
        state["active"] += 1
        state["peak"] = max(state["peak"], state["active"])
        await asyncio.sleep(0.02)
        state["active"] -= 1
        return _client_with_write_char()

    mock_brc.side_effect = connect
    device = _make_device()

    await asyncio.gather(
        establish_connection(BleakClient, device, "SL60", max_attempts=1),
        establish_connection(BleakClient, device, "SL60", max_attempts=1),
    )

    assert state["peak"] == 1
