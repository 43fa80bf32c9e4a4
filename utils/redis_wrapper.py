from __future__ import annotations

import asyncio
import logging
import random
import time
from typing import Any, Callable, Awaitable

from orchestration_service.config import get_settings
from orchestration_service.metrics import (
    redis_circuit_opened_total,
    redis_op_calls_total,
    redis_op_errors_total,
    redis_op_retries_total,
)

logger = logging.getLogger(__name__)


class RedisUnavailable(Exception):
    pass


class RedisOpFailed(Exception):
    pass


async def redis_op(ctx, op_fn: Callable[..., Awaitable[Any]], *op_args, retries: int = 1, **op_kwargs) -> Any:
    """Execute a redis operation with a single reconnect+retry.

    ctx: owner of the connection; must expose ``_redis``, ``_ensure_redis()``
        and ``_redis_circuit_open_until`` (epoch seconds, 0 when closed)
    op_fn: callable that accepts a redis client and performs the op. Any
        additional positional/keyword args passed to redis_op are forwarded
        to op_fn after the redis client.
    retries: number of retries after reconnect (default 1)

    Returns the op result directly.

    Raises:
      RedisUnavailable if the circuit is open or no client can be obtained.
      RedisOpFailed if the operation fails after retries.
    """
    cfg = get_settings()

    open_until = getattr(ctx, "_redis_circuit_open_until", 0) or 0
    if open_until and time.time() < open_until:
        redis_circuit_opened_total.inc()
        logger.warning("redis circuit open, skipping redis op")
        raise RedisUnavailable("redis circuit open")

    redis_op_calls_total.inc()

    if ctx._redis is None:
        await ctx._ensure_redis()
        if ctx._redis is None:
            raise RedisUnavailable("no redis available after ensure")

    attempt = 0
    last_exc = None
    while attempt <= retries:
        attempt += 1
        try:
            res = op_fn(ctx._redis, *op_args, **op_kwargs)
            if asyncio.iscoroutine(res):
                res = await res
            return res
        except asyncio.CancelledError:
            raise
        except Exception as e:
            last_exc = e
            redis_op_errors_total.inc()
            logger.warning("redis op failed on attempt %d: %s", attempt, e)
            if attempt > retries:
                break
            redis_op_retries_total.inc()
            # drop the broken client and reconnect
            ctx._redis = None
            await ctx._ensure_redis()
            if ctx._redis is None:
                raise RedisUnavailable("redis unavailable after reconnect")
            await asyncio.sleep(random.uniform(0, cfg.REDIS_RECONNECT_JITTER_MS) / 1000.0)

    raise RedisOpFailed(str(last_exc))
