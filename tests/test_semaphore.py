from __future__ import annotations

import asyncio

import allure
import pytest

from multishot.orchestrator.semaphore import ConcurrencyGate

pytestmark = [
    allure.epic("Prompt Orchestration"),
    allure.feature("Concurrency Gate"),
]


def test_gate_rejects_non_positive_capacity() -> None:
    with pytest.raises(ValueError, match="capacity"):
        ConcurrencyGate(0)


@pytest.mark.asyncio
async def test_gate_grants_permits_up_to_capacity() -> None:
    gate = ConcurrencyGate(2)

    await gate.acquire()
    await gate.acquire()

    assert gate.available == 0
    assert gate.outstanding == 2
    stats = gate.stats()
    assert (stats.available, stats.capacity, stats.waiting, stats.utilization) == (0, 2, 0, 1.0)


@pytest.mark.asyncio
async def test_gate_hands_permits_to_waiters_in_fifo_order() -> None:
    gate = ConcurrencyGate(1)
    await gate.acquire()
    order: list[int] = []

    async def _worker(index: int) -> None:
        async with gate:
            order.append(index)

    workers = [asyncio.create_task(_worker(index)) for index in range(4)]
    await asyncio.sleep(0)
    assert gate.waiting == 4

    gate.release()
    await asyncio.gather(*workers)

    assert order == [0, 1, 2, 3]
    assert gate.available == 1


@pytest.mark.asyncio
async def test_late_caller_cannot_overtake_queued_waiter() -> None:
    gate = ConcurrencyGate(1)
    await gate.acquire()
    queued = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)

    gate.release()
    late = asyncio.create_task(gate.acquire(timeout_ms=20))
    await queued

    with pytest.raises(TimeoutError):
        await late
    assert gate.outstanding == 1


def test_release_without_acquire_raises() -> None:
    gate = ConcurrencyGate(1)

    with pytest.raises(RuntimeError, match="released more times"):
        gate.release()


@pytest.mark.asyncio
async def test_acquire_timeout_does_not_leak_a_permit() -> None:
    gate = ConcurrencyGate(1)
    await gate.acquire()

    with pytest.raises(TimeoutError):
        await gate.acquire(timeout_ms=10)

    assert gate.waiting == 0
    gate.release()
    assert gate.available == 1


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_the_queue() -> None:
    gate = ConcurrencyGate(1)
    await gate.acquire()
    waiter = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert gate.waiting == 0
    gate.release()
    assert gate.available == 1


@pytest.mark.asyncio
async def test_waiter_cancelled_after_hand_off_passes_the_permit_on() -> None:
    gate = ConcurrencyGate(1)
    await gate.acquire()
    first = asyncio.create_task(gate.acquire())
    second = asyncio.create_task(gate.acquire())
    await asyncio.sleep(0)

    gate.release()
    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    await second

    assert gate.outstanding == 1
    gate.release()
    assert gate.available == 1
