"""Outer retry loop wrapping bleak-retry-connector.

Calls ``bleak_retry_connector.establish_connection(max_attempts=1)``
inside its own loop so that every attempt can be followed by checks the
upstream helper does not make:

- Per-device in-process lock (pre-attempt)
- Post-connect validation that the light's write characteristic
  resolved (post-success)
- Teardown of connections that fail validation (post-failure)
- Short backoff between attempts
"""

from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from typing import Any

from bleak import BleakClient
from bleak.backends.device import BLEDevice
from bleak.exc import BleakError
from bleak_retry_connector import (
    BleakAbortedError,
    BleakNotFoundError,
)
from bleak_retry_connector import establish_connection as _brc_establish_connection

from .const import DEFAULT_MAX_ATTEMPTS, DISCONNECT_TIMEOUT, WRITE_CHAR_UUID

_LOGGER = logging.getLogger(__name__)

_RETRY_BACKOFF = 1.0

# ── Per-device in-process lock ─────────────────────────────────────
#
# A reconnect timer and a startup connect must never race on the same
# light.  Locks are weakly referenced so devices that are no longer in
# use do not pin one forever.

_device_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
    weakref.WeakValueDictionary()
)


def _get_device_lock(address: str) -> asyncio.Lock:
    """Get or create the asyncio.Lock for a BLE device address."""
    addr = address.upper()
    lock = _device_locks.get(addr)
    if lock is None:
        lock = asyncio.Lock()
        _device_locks[addr] = lock
    return lock


async def validate_light_services(client: BleakClient) -> bool:
    """Validate that the light's write characteristic resolved.

    Connect can return before GATT discovery finished on slow chips,
    leaving a client that cannot accept commands.
    """
    if not client.services:
        _LOGGER.debug("GATT services empty for %s", client.address)
        return False
    if client.services.get_characteristic(WRITE_CHAR_UUID) is None:
        _LOGGER.debug("Write characteristic missing on %s", client.address)
        return False
    return True


async def _safe_validate(
    validate_connection: Callable[[BleakClient], Awaitable[bool]],
    client: BleakClient,
) -> bool:
    """Run the validation callback, catching all exceptions."""
    try:
        return await validate_connection(client)
    except Exception:
        _LOGGER.debug(
            "validate_connection raised an exception, treating as failed",
            exc_info=True,
        )
        return False


async def establish_connection(
    client_class: type[BleakClient],
    device: BLEDevice,
    name: str | None = None,
    *,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    validate_connection: Callable[[BleakClient], Awaitable[bool]] = validate_light_services,
    **kwargs: Any,
) -> BleakClient:
    """Connect to *device*, retrying and validating each attempt.

    Parameters
    ----------
    client_class:
        The BleakClient class (or subclass) to use.
    device:
        The BLE device to connect to.
    name:
        Device name for logging.
    max_attempts:
        Maximum number of attempts.
    validate_connection:
        Async callback ``(client) -> bool`` run after each successful
        connect.  A ``False`` result (or an exception) tears the client
        down and starts the next attempt.
    **kwargs:
        Passed through to ``bleak_retry_connector.establish_connection()``
        (e.g. ``disconnected_callback``).

    Raises
    ------
    BleakAbortedError
        If all attempts are exhausted.
    BleakNotFoundError
        If the device cannot be found.
    """
    display_name = name or device.name or device.address
    last_error: Exception | None = None

    async with _get_device_lock(device.address):
        for attempt in range(1, max_attempts + 1):
            try:
                client = await _brc_establish_connection(
                    client_class,
                    device,
                    display_name,
                    max_attempts=1,
                    **kwargs,
                )
            except BleakNotFoundError:
                raise
            except (
                BleakError,
                BleakAbortedError,
                asyncio.TimeoutError,
                EOFError,
                BrokenPipeError,
            ) as exc:
                last_error = exc
                _LOGGER.debug(
                    "%s: Attempt %d/%d failed: %s",
                    display_name,
                    attempt,
                    max_attempts,
                    exc,
                )
                if attempt < max_attempts:
                    await asyncio.sleep(_RETRY_BACKOFF)
                continue

            if not await _safe_validate(validate_connection, client):
                _LOGGER.info(
                    "%s: Attempt %d/%d validation failed, tearing down",
                    display_name,
                    attempt,
                    max_attempts,
                )
                try:
                    await asyncio.wait_for(
                        client.disconnect(), timeout=DISCONNECT_TIMEOUT
                    )
                except Exception:
                    _LOGGER.debug(
                        "Disconnect after failed validation raised",
                        exc_info=True,
                    )
                last_error = BleakError("connection validation failed")
                if attempt < max_attempts:
                    await asyncio.sleep(_RETRY_BACKOFF)
                continue

            _LOGGER.debug(
                "%s: Connected on attempt %d/%d",
                display_name,
                attempt,
                max_attempts,
            )
            return client

    raise BleakAbortedError(
        f"{display_name}: Failed to connect after {max_attempts} attempts"
        + (f": {last_error}" if last_error else "")
    )
