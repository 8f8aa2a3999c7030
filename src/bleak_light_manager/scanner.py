"""Single-flight discovery on top of the radio adapter.

An adapter can only run one scan at a time.  When several lights drop
together, each of their reconnects wants to rediscover its light; without
coordination that turns into a storm of overlapping scans that all fail
with ``InProgress``.

:class:`SingleFlightScanner` lets the first caller start the scan and
makes every caller that arrives while it is running await the same
result.  The shared task is forgotten as soon as it finishes, whatever
the outcome, so the next caller starts a fresh scan.

A hard timeout slightly longer than the requested duration guards
against scanners that ignore their own timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

from .const import SCAN_HARD_TIMEOUT_BUFFER, normalize_address
from .exceptions import DiscoveryFailure

if TYPE_CHECKING:
    from .adapter import LightHandle

_LOGGER = logging.getLogger(__name__)


class RadioAdapter(Protocol):
    """What the scanner needs from the radio layer."""

    async def discover(
        self, timeout: float, targets: set[str] | None = None
    ) -> list[LightHandle]:
        ...


class SingleFlightScanner:
    """Share one in-flight discovery among all concurrent callers.

    Parameters
    ----------
    adapter:
        The radio adapter performing the actual discovery.
    hard_timeout_buffer:
        Seconds added to each scan duration to form the hard timeout.
    """

    def __init__(
        self,
        adapter: RadioAdapter,
        hard_timeout_buffer: float = SCAN_HARD_TIMEOUT_BUFFER,
    ) -> None:
        self._adapter = adapter
        self._hard_timeout_buffer = hard_timeout_buffer
        self._active: asyncio.Task[list[LightHandle]] | None = None

    @property
    def in_flight(self) -> bool:
        """Whether a discovery is currently running."""
        return self._active is not None

    async def scan(
        self,
        timeout: float,
        targets: Iterable[str] | None = None,
    ) -> list[LightHandle]:
        """Discover lights, joining the in-flight scan when there is one.

        Parameters
        ----------
        timeout:
            Scan duration in seconds.
        targets:
            Addresses that allow the scan to stop early once all of them
            have been seen.  Ignored when joining a scan already running.

        Raises
        ------
        DiscoveryFailure
            If the adapter fails or the hard timeout expires.
        """
        if self._active is None:
            wanted = {normalize_address(t) for t in targets} if targets else None
            task = asyncio.ensure_future(self._run(timeout, wanted))
            task.add_done_callback(self._on_done)
            self._active = task
        else:
            _LOGGER.debug("Joining in-flight scan")
        # One caller giving up must not cancel the scan for the others
        return await asyncio.shield(self._active)

    async def _run(
        self, timeout: float, targets: set[str] | None
    ) -> list[LightHandle]:
        hard_timeout = timeout + self._hard_timeout_buffer
        _LOGGER.debug(
            "Scanning for %.1f s (targets=%s)",
            timeout,
            sorted(targets) if targets else "any",
        )
        try:
            found = await asyncio.wait_for(
                self._adapter.discover(timeout, targets), timeout=hard_timeout
            )
        except asyncio.TimeoutError as exc:
            _LOGGER.warning("Scanner hard timeout after %.0f s", hard_timeout)
            raise DiscoveryFailure(
                f"Scan did not finish within {hard_timeout:.0f} s"
            ) from exc
        _LOGGER.debug("Scan complete, %d light(s) found", len(found))
        return found

    def _on_done(self, task: asyncio.Task[list[LightHandle]]) -> None:
        if self._active is task:
            self._active = None
        if not task.cancelled():
            # Mark the exception retrieved; callers re-raise it themselves
            task.exception()
