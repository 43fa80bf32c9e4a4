import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Upstream ERP WebAPI
    UPSTREAM_BASE_URL: str = os.getenv("UPSTREAM_BASE_URL", "http://localhost:8080/api")
    UPSTREAM_USER: str = os.getenv("UPSTREAM_USER", "")
    UPSTREAM_PASSWORD: str = os.getenv("UPSTREAM_PASSWORD", "")
    UPSTREAM_COMPANY_CODE: str = os.getenv("UPSTREAM_COMPANY_CODE", "1")
    UPSTREAM_DEPARTMENT_CODE: str = os.getenv("UPSTREAM_DEPARTMENT_CODE", "1")
    UPSTREAM_TIMEOUT_SECONDS: float = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", "60"))
    # Retry policy shared by every operation in a plan
    RETRY_MAX_ATTEMPTS: int = int(os.getenv("RETRY_MAX_ATTEMPTS", "3"))
    RETRY_BASE_DELAY_MS: int = int(os.getenv("RETRY_BASE_DELAY_MS", "1000"))
    RETRY_MAX_DELAY_MS: int = int(os.getenv("RETRY_MAX_DELAY_MS", "30000"))
    # Plan fan-out
    PLAN_MAX_CONCURRENCY: int = int(os.getenv("PLAN_MAX_CONCURRENCY", "4"))
    PLAN_MAX_CALLS: int = int(os.getenv("PLAN_MAX_CALLS", "16"))
    PAGINATION_MAX_TAKE: int = int(os.getenv("PAGINATION_MAX_TAKE", "1000"))
    # Read-through cache (Redis, TTL only)
    CACHE_ENABLED: bool = bool(int(os.getenv("CACHE_ENABLED", "1")))
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    CACHE_KEY_PREFIX: str = os.getenv("CACHE_KEY_PREFIX", "upstream")
    CACHE_EXPORT_TTL_SECONDS: int = int(os.getenv("CACHE_EXPORT_TTL_SECONDS", "300"))
    CACHE_SERVICE_TTL_SECONDS: int = int(os.getenv("CACHE_SERVICE_TTL_SECONDS", "120"))
    # Redis reconnect jitter and circuit-breaker
    REDIS_RECONNECT_MAX_ATTEMPTS: int = int(os.getenv("REDIS_RECONNECT_MAX_ATTEMPTS", "3"))
    REDIS_RECONNECT_BASE_DELAY: float = float(os.getenv("REDIS_RECONNECT_BASE_DELAY", "0.5"))
    REDIS_RECONNECT_MAX_DELAY: float = float(os.getenv("REDIS_RECONNECT_MAX_DELAY", "10"))
    REDIS_RECONNECT_JITTER_MS: int = int(os.getenv("REDIS_RECONNECT_JITTER_MS", "250"))
    REDIS_CIRCUIT_COOLDOWN_SECONDS: float = float(os.getenv("REDIS_CIRCUIT_COOLDOWN_SECONDS", "60"))
    # UI merge heuristics
    MERGE_SIZE_TOLERANCE: float = float(os.getenv("MERGE_SIZE_TOLERANCE", "0.3"))
    # UI / form generation collaborator (OpenAI-compatible endpoint)
    GENERATION_BASE_URL: str = os.getenv("GENERATION_BASE_URL", "https://api.thesys.dev/v1/embed/chat/completions")
    GENERATION_API_KEY: str = os.getenv("GENERATION_API_KEY", "")
    GENERATION_MODEL: str = os.getenv("GENERATION_MODEL", "c1/anthropic/claude-sonnet-4/v-20250930")
    GENERATION_TIMEOUT_SECONDS: float = float(os.getenv("GENERATION_TIMEOUT_SECONDS", "120"))
    # Ops
    METRICS_PORT: int = int(os.getenv("METRICS_PORT", "0"))
    ADMIN_TOKEN: str = os.getenv("ORCHESTRATOR_ADMIN_TOKEN", "")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
