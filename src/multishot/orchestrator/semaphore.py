"""FIFO counting semaphore that bounds in-flight engine calls."""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from types import TracebackType


@dataclass(slots=True, frozen=True)
class GateStats:
    """Point-in-time permit accounting."""

    available: int
    capacity: int
    waiting: int
    utilization: float


class ConcurrencyGate:
    """Counting semaphore with strict FIFO hand-off.

    A released permit goes directly to the longest waiter, so a late caller can
    never overtake a queued one. A waiter that is cancelled or times out after
    its permit was handed over passes the permit on instead of leaking it.
    One gate belongs to one runner; it is not shared between runs.
    """

    def __init__(self, capacity: int) -> None:
        if capacity < 1:
            raise ValueError(f"Gate capacity must be >= 1, got {capacity}.")
        self._capacity = capacity
        self._outstanding = 0
        self._waiters: deque[asyncio.Future[None]] = deque()

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def outstanding(self) -> int:
        return self._outstanding

    @property
    def available(self) -> int:
        return self._capacity - self._outstanding

    @property
    def waiting(self) -> int:
        return len(self._waiters)

    async def acquire(self, timeout_ms: int | None = None) -> None:
        """Take one permit, suspending in FIFO order while none is free.

        Raises `TimeoutError` when `timeout_ms` elapses before a permit is granted.
        """

        if self._outstanding < self._capacity and not self._waiters:
            self._outstanding += 1
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            if timeout_ms is None:
                await waiter
            else:
                await asyncio.wait_for(waiter, timeout_ms / 1000)
        except BaseException:
            if waiter.done() and not waiter.cancelled():
                # granted concurrently with the cancellation
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        """Return one permit, handing it to the longest waiter if any."""

        if self._outstanding <= 0:
            raise RuntimeError("ConcurrencyGate released more times than acquired.")
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._outstanding -= 1

    def stats(self) -> GateStats:
        return GateStats(
            available=self.available,
            capacity=self._capacity,
            waiting=self.waiting,
            utilization=self._outstanding / self._capacity,
        )

    async def __aenter__(self) -> ConcurrencyGate:
        await self.acquire()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.release()
