"""Tests for per-key fetch deduplication."""
import asyncio

import pytest
from gitdash.application.single_flight import SingleFlight


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch():
    flight = SingleFlight()
    calls = 0

    async def fetch():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.01)
        return calls

    results = await asyncio.gather(*(flight.do("k", fetch) for _ in range(5)))

    assert results == [1] * 5
    assert calls == 1
    assert not flight.in_flight("k")


@pytest.mark.asyncio
async def test_distinct_keys_fetch_separately():
    flight = SingleFlight()

    async def fetch(value):
        await asyncio.sleep(0.01)
        return value

    results = await asyncio.gather(
        flight.do("a", lambda: fetch("a")),
        flight.do("b", lambda: fetch("b")),
    )

    assert results == ["a", "b"]


@pytest.mark.asyncio
async def test_failure_reaches_every_waiter_and_frees_the_key():
    flight = SingleFlight()

    async def fetch():
        await asyncio.sleep(0.01)
        raise RuntimeError("upstream down")

    results = await asyncio.gather(
        flight.do("k", fetch), flight.do("k", fetch), return_exceptions=True
    )

    assert all(isinstance(r, RuntimeError) for r in results)
    assert not flight.in_flight("k")

    async def recovered():
        return "ok"

    assert await flight.do("k", recovered) == "ok"


@pytest.mark.asyncio
async def test_cancelled_waiter_does_not_abort_others():
    flight = SingleFlight()
    release = asyncio.Event()

    async def fetch():
        await release.wait()
        return "done"

    first = asyncio.ensure_future(flight.do("k", fetch))
    second = asyncio.ensure_future(flight.do("k", fetch))
    await asyncio.sleep(0)

    first.cancel()
    await asyncio.sleep(0)
    release.set()

    assert await second == "done"
    assert first.cancelled()


@pytest.mark.asyncio
async def test_last_waiter_cancelling_cancels_fetch():
    flight = SingleFlight()
    started = asyncio.Event()
    cancelled = asyncio.Event()

    async def fetch():
        started.set()
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    waiter = asyncio.ensure_future(flight.do("k", fetch))
    await started.wait()

    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    await asyncio.wait_for(cancelled.wait(), timeout=1)

    await asyncio.sleep(0)
    assert not flight.in_flight("k")
