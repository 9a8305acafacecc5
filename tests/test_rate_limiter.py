import asyncio

import pytest

from app.core.errors import ErrorKind, PipelineError
from app.core.rate_limiter import RateLimiter, client_key_from_headers


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _limiter(clock=None, **kwargs) -> RateLimiter:
    params = {"window_seconds": 60, "max_requests": 10, "max_concurrent": 2}
    params.update(kwargs)
    return RateLimiter(clock=clock or FakeClock(), **params)


async def test_eleventh_request_in_window_rejected():
    clock = FakeClock()
    limiter = _limiter(clock)
    for _ in range(10):
        async with limiter.admit("1.2.3.4"):
            pass
    clock.now += 15.2
    with pytest.raises(PipelineError) as exc_info:
        await limiter.acquire("1.2.3.4")
    assert exc_info.value.kind is ErrorKind.RATE_LIMITED
    assert exc_info.value.retry_after == 45
    assert limiter.entry("1.2.3.4").active_requests == 0


async def test_retry_after_never_below_one():
    clock = FakeClock()
    limiter = _limiter(clock, max_requests=1)
    async with limiter.admit("a"):
        pass
    clock.now += 59.999
    with pytest.raises(PipelineError) as exc_info:
        await limiter.acquire("a")
    assert exc_info.value.retry_after == 1


async def test_new_window_after_expiry():
    clock = FakeClock()
    limiter = _limiter(clock, max_requests=2)
    for _ in range(2):
        async with limiter.admit("a"):
            pass
    clock.now += 60
    async with limiter.admit("a"):
        assert limiter.entry("a").count == 1


async def test_clients_are_independent():
    limiter = _limiter(max_requests=1)
    async with limiter.admit("a"):
        pass
    async with limiter.admit("b"):
        pass
    with pytest.raises(PipelineError):
        await limiter.acquire("a")


async def test_concurrency_cap_queues_in_order():
    limiter = _limiter(max_concurrent=2)
    await limiter.acquire("a")
    await limiter.acquire("a")
    order = []

    async def queued(name):
        await limiter.acquire("a")
        order.append(name)

    third = asyncio.create_task(queued("third"))
    fourth = asyncio.create_task(queued("fourth"))
    await asyncio.sleep(0)
    assert order == []
    assert len(limiter.entry("a").waiters) == 2

    limiter.release("a")
    await third
    assert order == ["third"]
    assert limiter.entry("a").active_requests == 2

    limiter.release("a")
    await fourth
    assert order == ["third", "fourth"]

    for _ in range(2):
        limiter.release("a")
    assert limiter.entry("a").active_requests == 0


async def test_cancelled_waiter_leaves_queue():
    limiter = _limiter(max_concurrent=1)
    await limiter.acquire("a")
    waiter = asyncio.create_task(limiter.acquire("a"))
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    entry = limiter.entry("a")
    assert not entry.waiters
    limiter.release("a")
    assert entry.active_requests == 0


async def test_cancel_after_handover_returns_the_slot():
    limiter = _limiter(max_concurrent=1)
    await limiter.acquire("a")
    waiter = asyncio.create_task(limiter.acquire("a"))
    await asyncio.sleep(0)
    # Hand the slot over, then cancel before the waiter gets to run.
    limiter.release("a")
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter
    assert limiter.entry("a").active_requests == 0
    await limiter.acquire("a")
    assert limiter.entry("a").active_requests == 1


async def test_slot_released_when_body_raises():
    limiter = _limiter()
    with pytest.raises(ValueError):
        async with limiter.admit("a"):
            raise ValueError("stage failed")
    assert limiter.entry("a").active_requests == 0


async def test_sweep_removes_only_idle_expired_entries():
    clock = FakeClock()
    limiter = _limiter(clock)
    async with limiter.admit("idle"):
        pass
    await limiter.acquire("busy")
    clock.now += 61
    assert limiter.sweep() == 1
    assert limiter.entry("idle") is None
    assert limiter.entry("busy") is not None


async def test_start_and_stop_sweeper():
    limiter = RateLimiter(sweep_interval=0.01)
    limiter.start()
    limiter.start()
    await asyncio.sleep(0.03)
    await limiter.stop()
    await limiter.stop()


@pytest.mark.parametrize(
    ("headers", "expected"),
    [
        ({"x-forwarded-for": "203.0.113.7, 10.0.0.1"}, "203.0.113.7"),
        ({"x-forwarded-for": " ", "x-real-ip": "198.51.100.2"}, "198.51.100.2"),
        ({"x-real-ip": "198.51.100.2"}, "198.51.100.2"),
        ({}, "unknown"),
    ],
)
def test_client_key_from_headers(headers, expected):
    assert client_key_from_headers(headers) == expected
