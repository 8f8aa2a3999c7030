"""In-process admission gate for connect sequences.

Asking one adapter to negotiate many GATT connections at once is the
fastest way to get ``InProgress`` errors and half-open links.  The gate
bounds how many connect sequences run concurrently; everyone else waits
in a FIFO queue.

**How it works:**

The gate holds *capacity* permits.  ``acquire()`` takes a free permit
immediately when one exists and nobody is queued; otherwise it parks a
future at the back of the queue.  ``release()`` hands the permit
directly to the oldest live waiter, so a newcomer can never overtake a
queued caller.

**Why a held permit cannot leak:**

- The gate is an async context manager and releases on every exit path.
- A waiter that is cancelled *after* being handed a permit passes it on
  to the next waiter instead of dropping it.

Usage::

    gate = AdmissionGate(capacity=2)
    async with gate:
        await handle.connect()
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque

_LOGGER = logging.getLogger(__name__)


class AdmissionGate:
    """Counting semaphore with strict FIFO wake-up order.

    Parameters
    ----------
    capacity:
        Maximum number of concurrent holders.  Must be at least 1.
    """

    __slots__ = ("_capacity", "_in_use", "_waiters")

    def __init__(self, capacity: int = 2) -> None:
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._capacity = capacity
        self._in_use = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def in_use(self) -> int:
        """Number of permits currently held."""
        return self._in_use

    @property
    def waiting(self) -> int:
        """Number of callers queued for a permit."""
        return sum(1 for fut in self._waiters if not fut.done())

    @property
    def idle(self) -> bool:
        """Whether no permit is held."""
        return self._in_use == 0

    async def acquire(self) -> None:
        """Take a permit, suspending until one is available."""
        if self._in_use < self._capacity and not self.waiting:
            self._in_use += 1
            return

        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(fut)
        _LOGGER.debug(
            "Admission gate full (%d/%d), %d waiting",
            self._in_use,
            self._capacity,
            self.waiting,
        )
        try:
            await fut
        except asyncio.CancelledError:
            if fut.cancelled():
                # Never handed a permit; just leave the queue
                try:
                    self._waiters.remove(fut)
                except ValueError:
                    pass
            else:
                # Handed a permit but cancelled before resuming
                self.release()
            raise
        # The releasing holder transferred its permit; in_use is unchanged

    def release(self) -> None:
        """Return a permit, waking the longest-waiting caller if any."""
        while self._waiters:
            fut = self._waiters.popleft()
            if not fut.done():
                fut.set_result(None)
                return
        if self._in_use == 0:
            _LOGGER.debug("Admission gate released with no permit held")
            return
        self._in_use -= 1

    async def __aenter__(self) -> "AdmissionGate":
        await self.acquire()
        return self

    async def __aexit__(self, *exc: object) -> None:
        self.release()
