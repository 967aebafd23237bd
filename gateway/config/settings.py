import os
from dataclasses import dataclass, field
from typing import Dict


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once from the environment by the factories."""

    redis_host: str = "redis"
    redis_port: int = 6379
    redis_db: int = 0
    redis_max_connections: int = 50
    store_backend: str = "redis"

    processor_urls: Dict[str, str] = field(default_factory=lambda: {
        "default": "http://payment-processor-default:8080",
        "fallback": "http://payment-processor-fallback:8080",
    })

    health_cache_ttl: int = 5
    health_lock_ttl: int = 2
    health_wait_retries: int = 5
    health_wait_interval: float = 0.1
    health_timeout: float = 0.5
    forward_timeout: float = 1.0

    worker_enabled: bool = True
    worker_poll_interval: float = 0.1
    worker_pending_interval: float = 1.0
    worker_pending_batch: int = 10
    worker_min_idle_ms: int = 1000
    worker_reclaim_all: bool = True
    stream_group_start: str = "0"

    app_port: int = 9999

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        return cls(
            # Default to 'redis' for the compose network
            redis_host=env.get("REDIS_HOST", "redis"),
            redis_port=int(env.get("REDIS_PORT", "6379")),
            redis_db=int(env.get("REDIS_DB", "0")),
            redis_max_connections=int(env.get("REDIS_MAX_CONNECTIONS", "50")),
            store_backend=env.get("STORE_BACKEND", "redis").lower(),
            processor_urls={
                "default": env.get("PROCESSOR_DEFAULT_URL", "http://payment-processor-default:8080"),
                "fallback": env.get("PROCESSOR_FALLBACK_URL", "http://payment-processor-fallback:8080"),
            },
            health_cache_ttl=int(env.get("HEALTH_CACHE_TTL", "5")),
            health_lock_ttl=int(env.get("HEALTH_LOCK_TTL", "2")),
            health_wait_retries=int(env.get("HEALTH_WAIT_RETRIES", "5")),
            health_wait_interval=float(env.get("HEALTH_WAIT_INTERVAL", "0.1")),
            health_timeout=float(env.get("HEALTH_TIMEOUT", "0.5")),
            forward_timeout=float(env.get("FORWARD_TIMEOUT", "1.0")),
            worker_enabled=_env_bool("WORKER_ENABLED", True),
            worker_poll_interval=float(env.get("WORKER_POLL_INTERVAL", "0.1")),
            worker_pending_interval=float(env.get("WORKER_PENDING_INTERVAL", "1.0")),
            worker_pending_batch=int(env.get("WORKER_PENDING_BATCH", "10")),
            worker_min_idle_ms=int(env.get("WORKER_MIN_IDLE_MS", "1000")),
            worker_reclaim_all=_env_bool("WORKER_RECLAIM_ALL", True),
            stream_group_start=env.get("STREAM_GROUP_START", "0"),
            app_port=int(env.get("APP_PORT", "9999")),
        )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"
