import asyncio
from typing import Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient

from gateway.adapters.memory_store import InMemoryCoordinationStore
from gateway.api import create_app
from gateway.domain.health_check import HealthCheckClient
from gateway.domain.ledger import PaymentLedger
from gateway.domain.models import HealthStatus
from gateway.domain.payment_worker import PaymentWorker

PROCESSOR_URLS = {
    "default": "http://payment-processor-default.test",
    "fallback": "http://payment-processor-fallback.test",
}


class MockResponse:
    def __init__(self, status_code: int, json_data: Optional[dict] = None):
        self.status_code = status_code
        self._json_data = json_data or {}

    def json(self):
        return self._json_data


class MockHttpClient:
    """Stands in for both processors: answers health probes and payment posts."""

    def __init__(self):
        self.get_calls = []
        self.post_calls = []
        self.health = {
            "default": {"failing": False, "minResponseTime": 10},
            "fallback": {"failing": False, "minResponseTime": 10},
        }
        self.health_status_code = 200
        self.health_delay = 0.0
        self.post_status_code = 200
        self.post_error: Optional[Exception] = None
        self.closed = False

    def _processor_for(self, url: str) -> str:
        for name, base_url in PROCESSOR_URLS.items():
            if url.startswith(base_url):
                return name
        raise AssertionError(f"unexpected url {url}")

    async def get(self, url: str):
        self.get_calls.append(url)
        if self.health_delay:
            await asyncio.sleep(self.health_delay)
        return MockResponse(self.health_status_code, self.health[self._processor_for(url)])

    async def post(self, url: str, json):
        self.post_calls.append((url, json))
        if self.post_error is not None:
            raise self.post_error
        return MockResponse(self.post_status_code)

    async def close(self):
        self.closed = True


async def seed_health(store, processor_name: str, failing: bool = False,
                      min_response_time: float = 10, latency: float = 5.0) -> None:
    """Put a health snapshot straight into the cache."""
    status = HealthStatus(failing=failing, min_response_time=min_response_time, latency=latency)
    await store.set_with_expiry(HealthCheckClient.cache_key(processor_name), status.model_dump_json(), 5)


@pytest.fixture
def store():
    return InMemoryCoordinationStore()


@pytest.fixture
def http_client():
    return MockHttpClient()


@pytest.fixture
def ledger(store, http_client):
    return PaymentLedger(store=store, http_client=http_client)


@pytest.fixture
def health_check(store, http_client):
    return HealthCheckClient(
        processor_urls=PROCESSOR_URLS,
        http_client=http_client,
        store=store,
        wait_retries=5,
        wait_interval=0.02,
    )


@pytest.fixture
def payment_worker_factory(store, ledger, health_check):
    def create_payment_worker(consumer_name: str = "consumer_test", **kwargs) -> PaymentWorker:
        return PaymentWorker(
            store=store,
            ledger=ledger,
            health_check=health_check,
            processor_urls=PROCESSOR_URLS,
            consumer_name=consumer_name,
            min_idle_ms=kwargs.pop("min_idle_ms", 0),
            **kwargs,
        )
    return create_payment_worker


@pytest.fixture
def payment_worker(payment_worker_factory):
    return payment_worker_factory()


@pytest.fixture
def client(ledger):
    """Test client without a background worker, so queued payments stay queued"""
    app = create_app(ledger=ledger, background_worker=None)
    return TestClient(app)


@pytest.fixture
def valid_payment_data():
    return {"correlationId": str(uuid4()), "amount": 19.90}


@pytest.fixture
def processor_urls():
    return PROCESSOR_URLS


@pytest.fixture(name="seed_health")
def seed_health_fixture(store):
    async def seed(processor_name: str, **kwargs):
        await seed_health(store, processor_name, **kwargs)
    return seed
