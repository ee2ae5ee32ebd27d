"""Process slot pool bounding concurrently live CLI processes.

claude-code-provider runtime module v0.1.0

This module provides:
- A counting pool of opaque slots with an optional capacity (None = unbounded)
- FIFO admission for waiters once the pool is saturated
- Cancellable waiting through a CancellationToken
- Exactly-once release enforcement (double release is a programming error)

Key design points:
- All state is mutated synchronously on the event loop thread, with no await
  between a capacity check and the matching update
- A released slot is handed directly to the oldest live waiter, so a new
  arrival can never overtake a queued request
"""

from __future__ import annotations

import asyncio
import itertools
import logging
from collections import deque
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from ..errors import SlotPoolError, cancelled_error
from .cancellation import CancellationToken

__all__ = [
    "DEFAULT_MAX_PROCESSES",
    "ProcessSlotPool",
    "Slot",
]

logger = logging.getLogger(__name__)

DEFAULT_MAX_PROCESSES = 4

_pool_ids = itertools.count(1)


@dataclass(frozen=True)
class Slot:
    """Opaque permit to run one CLI process.

    Attributes:
        pool_id: Identifier of the issuing pool
        serial: Per-pool grant counter
    """

    pool_id: int
    serial: int


class ProcessSlotPool:
    """Counting semaphore with FIFO waiters and strict release accounting.

    Example:
        pool = ProcessSlotPool(capacity=2)

        async with pool.slot(cancellation=token):
            await run_one_process()
    """

    def __init__(self, capacity: int | None = DEFAULT_MAX_PROCESSES) -> None:
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be >= 1 or None, got {capacity}")
        self._capacity = capacity
        self._pool_id = next(_pool_ids)
        self._serials = itertools.count(1)
        self._held: set[Slot] = set()
        self._waiters: deque[asyncio.Future[Slot]] = deque()

    @property
    def capacity(self) -> int | None:
        return self._capacity

    @property
    def active(self) -> int:
        """Number of slots currently held."""
        return len(self._held)

    @property
    def waiting(self) -> int:
        """Number of requests queued for a slot."""
        return sum(1 for fut in self._waiters if not fut.done())

    def _has_capacity(self) -> bool:
        return self._capacity is None or len(self._held) < self._capacity

    def _grant(self) -> Slot:
        slot = Slot(pool_id=self._pool_id, serial=next(self._serials))
        self._held.add(slot)
        logger.debug(
            f"Slot granted pool={self._pool_id} serial={slot.serial} "
            f"active={len(self._held)} waiting={len(self._waiters)}"
        )
        return slot

    async def acquire(self, cancellation: CancellationToken | None = None) -> Slot:
        """Acquire a slot, waiting in FIFO order if the pool is saturated.

        Args:
            cancellation: Optional token; cancelling it while queued removes
                the waiter and raises ClaudeCodeCancelledError

        Returns:
            The granted slot

        Raises:
            ClaudeCodeCancelledError: If the token fires before a slot is granted
        """
        if cancellation is not None and cancellation.cancelled:
            raise cancelled_error(cancellation.reason)

        if self._has_capacity() and not self._waiters:
            return self._grant()

        loop = asyncio.get_running_loop()
        waiter: asyncio.Future[Slot] = loop.create_future()
        self._waiters.append(waiter)
        logger.debug(
            f"Slot queued pool={self._pool_id} waiting={len(self._waiters)}"
        )

        def on_cancel(reason: str | None) -> None:
            if not waiter.done():
                waiter.set_exception(cancelled_error(reason))
            self._discard_waiter(waiter)

        unregister = None
        if cancellation is not None:
            unregister = cancellation.add_callback(on_cancel)

        try:
            return await waiter
        except asyncio.CancelledError:
            # Task cancelled after the slot was already handed over
            if waiter.done() and not waiter.cancelled() and waiter.exception() is None:
                self.release(waiter.result())
            raise
        finally:
            if unregister is not None:
                unregister()
            self._discard_waiter(waiter)

    def _discard_waiter(self, waiter: asyncio.Future[Slot]) -> None:
        try:
            self._waiters.remove(waiter)
        except ValueError:
            pass

    def release(self, slot: Slot) -> None:
        """Return a slot to the pool and admit the next queued waiter.

        Raises:
            SlotPoolError: If the slot is not currently held by this pool
        """
        if slot.pool_id != self._pool_id:
            raise SlotPoolError(f"Slot {slot} does not belong to pool {self._pool_id}")
        if slot not in self._held:
            raise SlotPoolError(f"Slot {slot} released twice or never acquired")

        self._held.remove(slot)
        logger.debug(
            f"Slot released pool={self._pool_id} serial={slot.serial} "
            f"active={len(self._held)}"
        )

        while self._waiters and self._has_capacity():
            waiter = self._waiters.popleft()
            if waiter.done():
                continue
            waiter.set_result(self._grant())

    @asynccontextmanager
    async def slot(
        self,
        cancellation: CancellationToken | None = None,
    ) -> AsyncIterator[Slot]:
        """Acquire a slot for the duration of the ``async with`` block."""
        granted = await self.acquire(cancellation)
        try:
            yield granted
        finally:
            self.release(granted)

    def __repr__(self) -> str:
        return (
            f"ProcessSlotPool(capacity={self._capacity}, "
            f"active={self.active}, waiting={self.waiting})"
        )
