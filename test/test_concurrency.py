import asyncio

import pytest

from omnibucket.core.concurrency import ConcurrencyLimiter


@pytest.mark.asyncio
async def test_never_exceeds_limit() -> None:
    """50 thunks under a limit of 5 peak at exactly 5 running."""
    limiter = ConcurrencyLimiter(5)
    running = 0
    peak = 0

    async def work(i: int) -> int:
        nonlocal running, peak
        running += 1
        peak = max(peak, running)
        await asyncio.sleep(0.01)
        running -= 1
        return i

    results = await limiter.run_all([lambda i=i: work(i) for i in range(50)])

    assert results == list(range(50)), "Results should keep submission order"
    assert peak == 5, "Peak concurrency should reach but not exceed the limit"
    assert limiter.running == 0
    assert limiter.waiting == 0


@pytest.mark.asyncio
async def test_failure_does_not_cancel_others() -> None:
    limiter = ConcurrencyLimiter(2)

    async def ok() -> str:
        await asyncio.sleep(0.01)
        return "ok"

    async def boom() -> str:
        raise RuntimeError("boom")

    results = await limiter.run_all([ok, boom, ok, ok])

    assert results[0] == "ok"
    assert isinstance(results[1], RuntimeError)
    assert results[2:] == ["ok", "ok"]
    assert limiter.running == 0


@pytest.mark.asyncio
async def test_slot_released_on_exception() -> None:
    limiter = ConcurrencyLimiter(1)
    with pytest.raises(ValueError):
        async with limiter.slot():
            raise ValueError("inside")
    assert limiter.running == 0
    assert await limiter.run(lambda: asyncio.sleep(0, result="next")) == "next"


@pytest.mark.asyncio
async def test_waiters_start_in_fifo_order() -> None:
    limiter = ConcurrencyLimiter(1)
    started: list[int] = []
    gate = asyncio.Event()

    async def first() -> None:
        started.append(0)
        await gate.wait()

    async def later(i: int) -> None:
        started.append(i)

    runs = [asyncio.create_task(limiter.run(first))]
    await asyncio.sleep(0)
    runs += [asyncio.create_task(limiter.run(lambda i=i: later(i))) for i in (1, 2, 3)]
    await asyncio.sleep(0)
    assert limiter.waiting == 3

    gate.set()
    await asyncio.gather(*runs)
    assert started == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_cancelled_waiter_gives_up_its_place() -> None:
    limiter = ConcurrencyLimiter(1)
    gate = asyncio.Event()
    holder = asyncio.create_task(limiter.run(gate.wait))
    await asyncio.sleep(0)

    waiter = asyncio.create_task(limiter.acquire())
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    assert limiter.waiting == 0
    gate.set()
    await holder
    assert limiter.running == 0


def test_limit_must_be_positive() -> None:
    with pytest.raises(ValueError):
        ConcurrencyLimiter(0)
