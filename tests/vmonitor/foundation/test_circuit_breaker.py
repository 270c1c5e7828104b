import asyncio

import pytest

from vmonitor.foundation.common import AsyncCircuitBreaker, CircuitOpenError


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_opens_after_max_failures_and_rejects_calls():
    opened = []
    cb = AsyncCircuitBreaker(max_failures=2, on_open=lambda: opened.append(True))

    @cb
    async def fail():
        raise ValueError("boom")

    for _ in range(2):
        with pytest.raises(ValueError):
            await fail()

    assert cb.is_open
    assert opened == [True]
    with pytest.raises(CircuitOpenError):
        await fail()


@pytest.mark.asyncio
async def test_success_resets_failure_count():
    failures = []
    cb = AsyncCircuitBreaker(max_failures=3, on_failure=failures.append)
    state = {"fail": True}

    @cb
    async def call():
        if state["fail"]:
            raise RuntimeError("down")
        return "ok"

    with pytest.raises(RuntimeError):
        await call()
    assert cb.failures == 1
    state["fail"] = False
    assert await call() == "ok"
    assert cb.failures == 0
    assert failures == [1]


@pytest.mark.asyncio
async def test_half_open_probe_after_reset_window():
    clock = FakeClock()
    closed = []
    cb = AsyncCircuitBreaker(
        max_failures=1, reset_after=30.0, clock=clock, on_close=lambda: closed.append(True)
    )
    state = {"fail": True}

    @cb
    async def call():
        if state["fail"]:
            raise ConnectionError("unreachable")
        return 1

    with pytest.raises(ConnectionError):
        await call()
    assert cb.is_open

    clock.now = 10.0
    with pytest.raises(CircuitOpenError):
        await call()

    clock.now = 31.0
    assert not cb.is_open
    with pytest.raises(ConnectionError):
        await call()
    assert cb.is_open

    clock.now = 62.0
    state["fail"] = False
    assert await call() == 1
    assert not cb.is_open
    assert closed == [True]


def test_manual_reset():
    cb = AsyncCircuitBreaker(max_failures=1)
    cb._opened_at = 0.0
    assert cb.is_open
    cb.reset()
    assert not cb.is_open


@pytest.mark.asyncio
async def test_only_one_call_probes_after_reset_window():
    clock = FakeClock()
    cb = AsyncCircuitBreaker(max_failures=1, reset_after=30.0, clock=clock)
    release = asyncio.Event()
    entered = []

    @cb
    async def call(fail: bool = False):
        entered.append(True)
        if fail:
            raise ConnectionError("unreachable")
        await release.wait()
        return "ok"

    with pytest.raises(ConnectionError):
        await call(fail=True)

    clock.now = 31.0
    probe = asyncio.create_task(call())
    await asyncio.sleep(0)
    assert cb.is_open
    with pytest.raises(CircuitOpenError):
        await call()
    assert len(entered) == 2

    release.set()
    assert await probe == "ok"
    assert not cb.is_open
    assert await call() == "ok"
