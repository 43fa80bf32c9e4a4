import time

import pytest

from utils.redis_wrapper import RedisOpFailed, RedisUnavailable, redis_op


class Flaky:
    def __init__(self, fail_first=1):
        self._fail_first = fail_first

    async def incr(self, key):
        if self._fail_first > 0:
            self._fail_first -= 1
            raise Exception('boom')
        return 1


class Ctx:
    def __init__(self, client_factory):
        self._client_factory = client_factory
        self._redis = None
        self._redis_circuit_open_until = 0.0
        self.ensure_calls = 0

    async def _ensure_redis(self):
        self.ensure_calls += 1
        self._redis = self._client_factory()


@pytest.mark.asyncio
async def test_redis_op_reconnects_and_retries(settings):
    settings.REDIS_RECONNECT_JITTER_MS = 0
    client = Flaky(fail_first=1)
    ctx = Ctx(lambda: client)
    res = await redis_op(ctx, lambda r, k: r.incr(k), 'k')
    assert res == 1
    # initial connect + reconnect after the failure
    assert ctx.ensure_calls == 2


@pytest.mark.asyncio
async def test_redis_op_gives_up_after_retries(settings):
    settings.REDIS_RECONNECT_JITTER_MS = 0
    ctx = Ctx(lambda: Flaky(fail_first=100))
    with pytest.raises(RedisOpFailed):
        await redis_op(ctx, lambda r, k: r.incr(k), 'k', retries=1)


@pytest.mark.asyncio
async def test_redis_op_unavailable_when_no_client():
    ctx = Ctx(lambda: None)
    with pytest.raises(RedisUnavailable):
        await redis_op(ctx, lambda r, k: r.incr(k), 'k')


@pytest.mark.asyncio
async def test_redis_op_respects_open_circuit():
    ctx = Ctx(lambda: Flaky(fail_first=0))
    ctx._redis_circuit_open_until = time.time() + 60
    with pytest.raises(RedisUnavailable):
        await redis_op(ctx, lambda r, k: r.incr(k), 'k')
    assert ctx.ensure_calls == 0


@pytest.mark.asyncio
async def test_expired_circuit_allows_ops():
    ctx = Ctx(lambda: Flaky(fail_first=0))
    ctx._redis_circuit_open_until = time.time() - 1
    assert await redis_op(ctx, lambda r, k: r.incr(k), 'k') == 1
