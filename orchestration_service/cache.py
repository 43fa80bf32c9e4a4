"""
Read-through response cache for side-effect-free upstream calls.

Keys are ``{prefix}:{kind}:{family}:{operation}:{digest}`` where digest is a
short sha256 of the canonical JSON parameters. A mutation on a family drops
every export and service key of that family (SCAN + DEL), so no stale read
survives a write through this service. Entries otherwise expire on TTL only.

Redis trouble never fails an upstream call: unavailable or failing Redis is
logged and treated as a miss (reads) or a no-op (writes, invalidation).
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import time
from typing import Any, Callable, Dict, Optional

import redis.asyncio as aioredis

from .config import get_settings
from .logging_setup import logger
from .metrics import cache_invalidations_total, cache_requests_total, redis_reconnect_attempts
from utils.redis_wrapper import RedisOpFailed, RedisUnavailable, redis_op

_MISS = object()

CACHEABLE_KINDS = ("export", "service")


def cache_key(prefix: str, kind: str, family: str, operation: str, params: Optional[Dict[str, Any]]) -> str:
    canonical = json.dumps(params or {}, sort_keys=True, separators=(",", ":"), default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:16]
    return f"{prefix}:{kind}:{family}:{operation}:{digest}"


class ResponseCache:
    def __init__(self, url: Optional[str] = None, prefix: Optional[str] = None,
                 client_factory: Optional[Callable[[str], Any]] = None, enabled: Optional[bool] = None):
        cfg = get_settings()
        self.url = url or cfg.REDIS_URL
        self.prefix = prefix or cfg.CACHE_KEY_PREFIX
        self.enabled = cfg.CACHE_ENABLED if enabled is None else enabled
        self._client_factory = client_factory or aioredis.from_url
        self._redis = None
        self._redis_failure_count = 0
        self._redis_circuit_open_until = 0.0

    def default_ttl(self, kind: str) -> int:
        cfg = get_settings()
        return cfg.CACHE_SERVICE_TTL_SECONDS if kind == "service" else cfg.CACHE_EXPORT_TTL_SECONDS

    async def _ensure_redis(self, max_attempts: Optional[int] = None, base_delay: Optional[float] = None):
        """Ensure self._redis is connected, with exponential backoff on failures.

        Leaves ``self._redis`` as None and opens the circuit for the configured
        cooldown when every attempt fails.
        """
        cfg = get_settings()
        max_attempts = int(max_attempts or cfg.REDIS_RECONNECT_MAX_ATTEMPTS)
        base_delay = float(base_delay if base_delay is not None else cfg.REDIS_RECONNECT_BASE_DELAY)
        max_delay = float(cfg.REDIS_RECONNECT_MAX_DELAY)
        jitter_ms = int(cfg.REDIS_RECONNECT_JITTER_MS)
        cooldown = float(cfg.REDIS_CIRCUIT_COOLDOWN_SECONDS)

        now = time.time()
        if self._redis_circuit_open_until and now < self._redis_circuit_open_until:
            logger.warning("redis circuit open until %s, skipping reconnect attempts", self._redis_circuit_open_until)
            self._redis = None
            return

        attempts = 0
        while attempts < max_attempts:
            client = None
            try:
                client = self._client_factory(self.url)
                if await client.ping():
                    self._redis = client
                    self._redis_failure_count = 0
                    self._redis_circuit_open_until = 0.0
                    return
                raise ConnectionError("redis ping returned falsy")
            except asyncio.CancelledError:
                raise
            except Exception as e:
                if client is not None:
                    try:
                        await client.aclose()
                    except Exception:
                        logger.debug("error closing failed redis client", exc_info=True)
                attempts += 1
                self._redis_failure_count += 1
                redis_reconnect_attempts.inc()
                if attempts >= max_attempts:
                    break
                delay = min(max_delay, base_delay * (2 ** (attempts - 1)))
                jitter = (jitter_ms / 1000.0) * (0.5 - (time.time() % 1))
                delay = max(0.0, delay + jitter)
                logger.warning("redis connect attempt %d failed (%s), retrying in %.1fs", attempts, e, delay)
                await asyncio.sleep(delay)

        self._redis = None
        self._redis_circuit_open_until = time.time() + cooldown
        logger.error("could not establish redis connection after %d attempts, circuit open for %.1fs",
                     max_attempts, cooldown)

    async def get(self, kind: str, family: str, operation: str, params: Optional[Dict[str, Any]]) -> Any:
        """Return the cached value or ``_MISS``."""
        if not self.enabled:
            return _MISS
        key = cache_key(self.prefix, kind, family, operation, params)
        try:
            raw = await redis_op(self, lambda r, k: r.get(k), key)
        except (RedisUnavailable, RedisOpFailed) as e:
            logger.warning("cache read skipped for %s: %s", key, e)
            cache_requests_total.labels(result="error").inc()
            return _MISS
        if raw is None:
            logger.debug("cache miss %s", key)
            cache_requests_total.labels(result="miss").inc()
            return _MISS
        try:
            value = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("discarding undecodable cache entry %s", key)
            cache_requests_total.labels(result="miss").inc()
            return _MISS
        logger.debug("cache hit %s", key)
        cache_requests_total.labels(result="hit").inc()
        return value

    async def set(self, kind: str, family: str, operation: str, params: Optional[Dict[str, Any]], value: Any,
                  ttl: Optional[int] = None) -> None:
        if not self.enabled:
            return
        key = cache_key(self.prefix, kind, family, operation, params)
        ttl = int(ttl or self.default_ttl(kind))
        try:
            payload = json.dumps(value, default=str)
        except (TypeError, ValueError):
            logger.warning("value for %s is not JSON serialisable; not cached", key)
            return
        try:
            await redis_op(self, lambda r, k, t, v: r.setex(k, t, v), key, ttl, payload)
        except (RedisUnavailable, RedisOpFailed) as e:
            logger.warning("cache write skipped for %s: %s", key, e)

    async def invalidate_family(self, family: str) -> int:
        """Delete every cacheable entry of ``family``; returns the number removed."""
        if not self.enabled:
            return 0

        async def _drop(r, pattern):
            keys = [k async for k in r.scan_iter(match=pattern)]
            if not keys:
                return 0
            return await r.delete(*keys)

        removed = 0
        for kind in CACHEABLE_KINDS:
            pattern = f"{self.prefix}:{kind}:{family}:*"
            try:
                removed += int(await redis_op(self, _drop, pattern) or 0)
            except (RedisUnavailable, RedisOpFailed) as e:
                logger.warning("cache invalidation skipped for %s: %s", pattern, e)
        if removed:
            cache_invalidations_total.inc(removed)
        logger.info("invalidated %d cache entries for family '%s'", removed, family)
        return removed

    async def close(self) -> None:
        if self._redis is not None:
            try:
                await self._redis.aclose()
            finally:
                self._redis = None


def is_miss(value: Any) -> bool:
    return value is _MISS
