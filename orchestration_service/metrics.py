"""Prometheus metrics used by the executor, plan runner, cache and merge engine."""

from __future__ import annotations
import logging

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from .config import get_settings

logger = logging.getLogger(__name__)


# Upstream calls
upstream_attempts_total = Counter("upstream_attempts_total", "Upstream call attempts", ["operation", "result"])
upstream_retries_total = Counter("upstream_retries_total", "Upstream retries scheduled", ["operation"])

# Plans
plan_calls_total = Counter("plan_calls_total", "Plan operations completed", ["result"])
plan_duration_seconds = Histogram("plan_duration_seconds", "Wall time of a plan run")
plan_inflight = Gauge("plan_inflight", "Operations currently executing")

# Cache
cache_requests_total = Counter("cache_requests_total", "Cache lookups", ["result"])
cache_invalidations_total = Counter("cache_invalidations_total", "Cache keys invalidated by mutations")

# Redis wrapper
redis_reconnect_attempts = Counter("redis_reconnect_attempts", "Redis reconnect attempts")
redis_op_errors_total = Counter("redis_op_errors_total", "Redis operation errors")
redis_op_retries_total = Counter("redis_op_retries_total", "Redis operation retries")
redis_circuit_opened_total = Counter("redis_circuit_opened_total", "Redis circuit opened events")
redis_op_calls_total = Counter("redis_op_calls_total", "Redis operation calls")

# Presentation
ui_merges_total = Counter("ui_merges_total", "UI merges by strategy", ["strategy"])
orchestration_requests_total = Counter("orchestration_requests_total", "Requests processed", ["mode", "result"])


def start_metrics_server_if_enabled():
    cfg = get_settings()
    try:
        if getattr(cfg, "METRICS_PORT", None):
            start_http_server(cfg.METRICS_PORT)
            logger.info("metrics server listening on :%d", cfg.METRICS_PORT)
    except Exception:
        logger.exception("failed to start metrics server")
