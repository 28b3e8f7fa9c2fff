# tests/test_timers.py

from __future__ import annotations

import asyncio

import pytest

from background_tasks.timers import RepeatingTimer

from .fakes import wait_until


@pytest.mark.asyncio
async def test_first_tick_runs_immediately() -> None:
    calls = []

    async def tick() -> None:
        calls.append(1)

    timer = RepeatingTimer("t", 60.0, tick)
    timer.start()
    await wait_until(lambda: len(calls) == 1)

    assert timer.active
    timer.cancel()
    await asyncio.sleep(0)
    assert not timer.active


@pytest.mark.asyncio
async def test_ticks_never_overlap() -> None:
    running = 0
    max_running = 0
    calls = 0

    async def tick() -> None:
        nonlocal running, max_running, calls
        running += 1
        max_running = max(max_running, running)
        await asyncio.sleep(0.02)
        running -= 1
        calls += 1

    timer = RepeatingTimer("slow", 0.001, tick)
    timer.start()
    await wait_until(lambda: calls >= 3)
    timer.cancel()

    assert max_running == 1


@pytest.mark.asyncio
async def test_cancel_from_inside_callback_finishes_current_tick() -> None:
    finished = []
    timer: RepeatingTimer

    async def tick() -> None:
        timer.cancel()
        await asyncio.sleep(0)
        finished.append(1)

    timer = RepeatingTimer("self-stop", 0.001, tick)
    timer.start()
    await asyncio.sleep(0.05)

    assert finished == [1]
    assert not timer.active


@pytest.mark.asyncio
async def test_callback_errors_do_not_stop_timer() -> None:
    calls = 0

    async def tick() -> None:
        nonlocal calls
        calls += 1
        if calls == 1:
            raise RuntimeError("transient")

    timer = RepeatingTimer("flaky", 0.001, tick)
    timer.start()
    await wait_until(lambda: calls >= 2)
    timer.cancel()

    assert calls >= 2


@pytest.mark.asyncio
async def test_start_twice_keeps_one_handle() -> None:
    calls = 0

    async def tick() -> None:
        nonlocal calls
        calls += 1

    timer = RepeatingTimer("once", 60.0, tick)
    timer.start()
    timer.start()
    await asyncio.sleep(0.02)
    timer.cancel()

    assert calls == 1
