import asyncio

from channels.rate_limiter import OutboundRateLimiter, SlidingWindowRateLimiter


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class BrokenBackend:
    async def hit(self, key, limit=None):
        raise ConnectionError("redis unavailable")


def test_window_fills_then_frees_up():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(2, 60, clock=clock)

    async def _run():
        results = [await limiter.hit("ws-1") for _ in range(3)]
        clock.now += 61
        results.append(await limiter.hit("ws-1"))
        return results

    assert asyncio.run(_run()) == [True, True, False, True]


def test_per_call_limit_overrides_default():
    limiter = SlidingWindowRateLimiter(100, 60, clock=FakeClock())

    async def _run():
        return [await limiter.hit("ws-1", limit=1), await limiter.hit("ws-1", limit=1)]

    assert asyncio.run(_run()) == [True, False]


def test_idle_keys_are_forgotten():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(5, 60, clock=clock)

    async def _run():
        for n in range(50):
            await limiter.hit(f"ws-{n}")
        assert len(limiter) == 50
        clock.now += 120
        await limiter.hit("ws-new")

    asyncio.run(_run())
    assert len(limiter) == 1


def test_outbound_limiter_fails_open_when_store_is_down():
    limiter = OutboundRateLimiter(backend=BrokenBackend())
    assert asyncio.run(limiter("ws-1")) is True


def test_outbound_limiter_blocks_when_window_is_full():
    limiter = OutboundRateLimiter(backend=SlidingWindowRateLimiter(1, 60, clock=FakeClock()))

    async def _run():
        return [await limiter("ws-1"), await limiter("ws-1")]

    assert asyncio.run(_run()) == [True, False]
