import asyncio
import logging
import time
from typing import Dict, Optional

from gateway.domain.errors import CacheTimeoutError, HealthProbeError
from gateway.domain.models import PROCESSORS, HealthStatus
from gateway.domain.protocols import CoordinationStore, HttpClient

logger = logging.getLogger(__name__)

CACHE_KEY = "health_check_cache"
LOCK_KEY = "health_check_lock"


class HealthCheckClient:
    """Cache-aside health lookups shared by every worker through the coordination store.

    A miss takes a per-processor lock with set-if-absent; the holder probes the
    processor and fills the cache, everybody else polls the cache until the
    value shows up. The lock is never released explicitly: it expires after
    ``lock_ttl`` seconds, so at most one probe per processor happens in that
    window even when the refresh succeeds.
    """

    def __init__(
        self,
        processor_urls: Dict[str, str],
        http_client: HttpClient,
        store: CoordinationStore,
        cache_ttl: int = 5,
        lock_ttl: int = 2,
        wait_retries: int = 5,
        wait_interval: float = 0.1,
    ):
        self.processor_urls = processor_urls
        self.http_client = http_client
        self.store = store
        self.cache_ttl = cache_ttl
        self.lock_ttl = lock_ttl
        self.wait_retries = wait_retries
        self.wait_interval = wait_interval

    @staticmethod
    def cache_key(processor_name: str) -> str:
        return f"{CACHE_KEY}_{processor_name}"

    @staticmethod
    def lock_key(processor_name: str) -> str:
        return f"{LOCK_KEY}_{processor_name}"

    async def get_health(self, processor_name: str) -> HealthStatus:
        """Return the cached health of a processor, refreshing it when absent."""
        cache_key = self.cache_key(processor_name)
        lock_key = self.lock_key(processor_name)

        cached_status = await self._read_cache(cache_key)
        if cached_status is not None:
            return cached_status

        acquired = await self.store.set_if_absent(lock_key, "1")
        if not acquired:
            # Another instance is refreshing; wait for its result
            return await self._wait_for_cache(processor_name)

        await self.store.refresh_expiry(lock_key, self.lock_ttl)

        health_status = await self._fetch_health(processor_name)
        await self.store.set_with_expiry(cache_key, health_status.model_dump_json(), self.cache_ttl)
        return health_status

    async def reset_cache(self) -> None:
        """Drop every cached snapshot and lock so the next lookup probes again."""
        keys = []
        for processor_name in PROCESSORS:
            keys.append(self.cache_key(processor_name))
            keys.append(self.lock_key(processor_name))
        await self.store.delete(keys)
        logger.info("Health cache reset")

    async def _read_cache(self, cache_key: str) -> Optional[HealthStatus]:
        data = await self.store.get(cache_key)
        if data is None:
            return None
        return HealthStatus.model_validate_json(data)

    async def _wait_for_cache(self, processor_name: str) -> HealthStatus:
        cache_key = self.cache_key(processor_name)

        for _ in range(self.wait_retries):
            cached_status = await self._read_cache(cache_key)
            if cached_status is not None:
                return cached_status
            await asyncio.sleep(self.wait_interval)

        logger.warning(f"Timeout waiting for the {processor_name} health cache")
        raise CacheTimeoutError(f"Timeout waiting for the {processor_name} health cache")

    async def _fetch_health(self, processor_name: str) -> HealthStatus:
        base_url = self.processor_urls.get(processor_name)
        if base_url is None:
            raise HealthProbeError(f"Unknown payment processor: {processor_name}")

        url = f"{base_url}/payments/service-health"
        start_time = time.perf_counter()
        try:
            response = await self.http_client.get(url)
        except Exception as e:
            raise HealthProbeError(f"Health probe for {processor_name} failed: {e}") from e
        latency_ms = round((time.perf_counter() - start_time) * 1000, 2)

        if response.status_code >= 400:
            raise HealthProbeError(
                f"Health probe for {processor_name} returned HTTP {response.status_code}"
            )

        try:
            data = response.json()
            health_status = HealthStatus(
                failing=data["failing"],
                min_response_time=data["minResponseTime"],
                latency=latency_ms,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise HealthProbeError(f"Malformed health response from {processor_name}: {e}") from e

        logger.debug(f"Health of {processor_name}: {health_status}")
        return health_status
