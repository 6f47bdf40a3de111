from __future__ import annotations

import asyncio

import pytest

from domainpilot.services.scheduler import CancellationToken, FakeClock


@pytest.mark.asyncio
async def test_fake_clock_auto_advances() -> None:
    clock = FakeClock()
    start = clock.now()
    await clock.sleep(300)
    assert (clock.now() - start).total_seconds() == 300
    assert clock.sleeps == [300]


@pytest.mark.asyncio
async def test_manual_clock_wakes_sleepers_on_advance() -> None:
    clock = FakeClock(auto_advance=False)
    sleeper = asyncio.create_task(clock.sleep(60))
    await asyncio.sleep(0)
    assert not sleeper.done()
    clock.advance(59)
    await asyncio.sleep(0)
    assert not sleeper.done()
    clock.advance(1)
    await asyncio.wait_for(sleeper, timeout=1)


@pytest.mark.asyncio
async def test_cancellation_interrupts_sleep() -> None:
    clock = FakeClock(auto_advance=False)
    token = CancellationToken()
    waiter = asyncio.create_task(token.sleep_or_cancel(clock, 300))
    await asyncio.sleep(0)
    token.cancel()
    assert await asyncio.wait_for(waiter, timeout=1) is True
    assert clock.pending_sleepers == 0


@pytest.mark.asyncio
async def test_sleep_completes_when_not_cancelled() -> None:
    token = CancellationToken()
    assert await token.sleep_or_cancel(FakeClock(), 300) is False
    assert token.cancelled is False
