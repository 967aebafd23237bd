import logging
import os
import uuid
from typing import Optional

import redis.asyncio as redis

from gateway.adapters.http import HttpxHttpClient
from gateway.adapters.memory_store import InMemoryCoordinationStore
from gateway.adapters.redis_store import RedisCoordinationStore
from gateway.config.settings import Settings
from gateway.domain.background_worker import BackgroundWorker
from gateway.domain.health_check import HealthCheckClient
from gateway.domain.ledger import PaymentLedger
from gateway.domain.payment_worker import PaymentWorker
from gateway.domain.protocols import CoordinationStore

logger = logging.getLogger(__name__)


def generate_consumer_name() -> str:
    """Process-unique consumer identity, fixed for the lifetime of the process."""
    return f"consumer_{os.getpid()}_{uuid.uuid4().hex[:8]}"


def create_store(settings: Settings) -> CoordinationStore:
    """Create the coordination store selected by STORE_BACKEND."""
    if settings.store_backend == "memory":
        logger.warning("Using the in-memory coordination store; state is not shared between processes")
        return InMemoryCoordinationStore()

    connection_pool = redis.ConnectionPool.from_url(
        settings.redis_url,
        decode_responses=True,
        max_connections=settings.redis_max_connections,
    )
    return RedisCoordinationStore(redis_client=redis.Redis(connection_pool=connection_pool))


def create_payment_ledger(settings: Settings, store: CoordinationStore) -> PaymentLedger:
    """Create a PaymentLedger that forwards payments over a pooled httpx client."""
    http_client = HttpxHttpClient(timeout=settings.forward_timeout)
    return PaymentLedger(store=store, http_client=http_client)


def create_health_check(settings: Settings, store: CoordinationStore) -> HealthCheckClient:
    http_client = HttpxHttpClient(
        timeout=settings.health_timeout,
        max_connections=20,
        max_keepalive_connections=10,
    )
    return HealthCheckClient(
        processor_urls=settings.processor_urls,
        http_client=http_client,
        store=store,
        cache_ttl=settings.health_cache_ttl,
        lock_ttl=settings.health_lock_ttl,
        wait_retries=settings.health_wait_retries,
        wait_interval=settings.health_wait_interval,
    )


def create_background_worker(
    settings: Settings,
    store: CoordinationStore,
    ledger: PaymentLedger,
    consumer_name: Optional[str] = None,
) -> BackgroundWorker:
    """Create a BackgroundWorker driving a PaymentWorker for production use."""
    payment_worker = PaymentWorker(
        store=store,
        ledger=ledger,
        health_check=create_health_check(settings, store),
        processor_urls=settings.processor_urls,
        consumer_name=consumer_name or generate_consumer_name(),
        group_start_id=settings.stream_group_start,
        pending_batch_size=settings.worker_pending_batch,
        min_idle_ms=settings.worker_min_idle_ms,
        reclaim_all_consumers=settings.worker_reclaim_all,
    )

    return BackgroundWorker(
        payment_worker=payment_worker,
        poll_interval=settings.worker_poll_interval,
        pending_interval=settings.worker_pending_interval,
    )


async def close_components(ledger: PaymentLedger, background_worker: Optional[BackgroundWorker] = None) -> None:
    """Release HTTP clients and the store connection pool."""
    if background_worker is not None:
        await background_worker.payment_worker.health_check.http_client.close()
    await ledger.http_client.close()
    await ledger.store.close()
