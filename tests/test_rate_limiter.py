from __future__ import annotations

import pytest

from assistant.services.rate_limiter import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.anyio
async def test_limit_is_enforced_per_key() -> None:
    limiter = RateLimiter(2, 60, clock=FakeClock())

    assert await limiter.hit("a")
    assert await limiter.hit("a")
    assert not await limiter.hit("a")
    assert await limiter.hit("b")


@pytest.mark.anyio
async def test_window_expiry_restores_quota() -> None:
    clock = FakeClock()
    limiter = RateLimiter(1, 60, clock=clock)

    assert await limiter.hit("a")
    assert not await limiter.hit("a")

    clock.now += 60
    assert await limiter.hit("a")


@pytest.mark.anyio
async def test_reset_clears_windows() -> None:
    limiter = RateLimiter(1, 60, clock=FakeClock())
    await limiter.hit("a")
    await limiter.hit("b")

    await limiter.reset("a")
    assert await limiter.hit("a")
    assert not await limiter.hit("b")

    await limiter.reset()
    assert await limiter.hit("b")
