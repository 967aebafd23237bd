from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from gateway.domain.errors import (
    DownstreamForwardError,
    DuplicateCorrelationIdError,
    InvalidRangeError,
    StoreUnavailableError,
)
from gateway.domain.models import PaymentRequest, PaymentsSummary, format_timestamp

PROCESSOR_URL = "http://payment-processor-default.test"


def payment_record(processor: str, amount: str, requested_at: datetime) -> dict:
    return {
        "correlationId": str(uuid4()),
        "amount": amount,
        "requestedAt": format_timestamp(requested_at),
        "processor": processor,
    }


class TestSubmit:

    @pytest.mark.asyncio
    async def test_submit_enqueues_flattened_payment(self, ledger, store):
        correlation_id = uuid4()

        stream_data = await ledger.submit(PaymentRequest(correlationId=correlation_id, amount=Decimal("100.50")))

        entries = store.streams["payment_stream"].entries
        assert len(entries) == 1
        _, fields = entries[0]
        assert fields == [item for pair in stream_data.items() for item in pair]
        assert stream_data["correlationId"] == str(correlation_id)
        assert stream_data["amount"] == "100.50"
        assert stream_data["requestedAt"].endswith("Z")
        assert stream_data["enqueuedAtAsTimestamp"].isdigit()

    @pytest.mark.asyncio
    async def test_resubmitting_same_correlation_id_is_rejected(self, ledger, store):
        payment_request = PaymentRequest(correlationId=uuid4(), amount=Decimal("19.90"))

        await ledger.submit(payment_request)
        for _ in range(2):
            with pytest.raises(DuplicateCorrelationIdError):
                await ledger.submit(payment_request)

        assert len(store.streams["payment_stream"].entries) == 1

    @pytest.mark.asyncio
    async def test_distinct_correlation_ids_are_all_enqueued(self, ledger, store):
        for _ in range(5):
            await ledger.submit(PaymentRequest(correlationId=uuid4(), amount=Decimal("1.00")))

        assert len(store.streams["payment_stream"].entries) == 5

    @pytest.mark.asyncio
    async def test_failed_enqueue_releases_the_correlation_id(self, ledger, store):
        payment_request = PaymentRequest(correlationId=uuid4(), amount=Decimal("19.90"))
        working_append = store.stream_append

        async def unavailable(stream, fields):
            raise StoreUnavailableError("Redis connection error")

        store.stream_append = unavailable
        with pytest.raises(StoreUnavailableError):
            await ledger.submit(payment_request)

        store.stream_append = working_append
        await ledger.submit(payment_request)

        assert len(store.streams["payment_stream"].entries) == 1


class TestForward:

    @pytest.mark.asyncio
    async def test_forward_posts_payment_and_records_it(self, ledger, store, http_client):
        requested_at = datetime(2025, 7, 15, 12, 0, 0, 123456, tzinfo=timezone.utc)
        payment_data = payment_record("default", "19.90", requested_at)
        payment_data["enqueuedAtAsTimestamp"] = "1752580800"

        await ledger.forward(payment_data, PROCESSOR_URL)

        url, body = http_client.post_calls[0]
        assert url == f"{PROCESSOR_URL}/payments"
        assert body == {
            "correlationId": payment_data["correlationId"],
            "amount": 19.90,
            "requestedAt": "2025-07-15T12:00:00.123456Z",
        }

        record = await store.hash_get_all(f"payment_{payment_data['correlationId']}")
        assert record["processor"] == "default"
        assert record["amount"] == "19.90"
        assert store.sorted_sets["payments_by_date"][payment_data["correlationId"]] == requested_at.timestamp()

    @pytest.mark.asyncio
    async def test_already_processed_response_counts_as_success(self, ledger, store, http_client):
        http_client.post_status_code = 422
        payment_data = payment_record("fallback", "10.00", datetime.now(timezone.utc))

        await ledger.forward(payment_data, PROCESSOR_URL)

        record = await store.hash_get_all(f"payment_{payment_data['correlationId']}")
        assert record["processor"] == "fallback"
        assert payment_data["correlationId"] in store.sorted_sets["payments_by_date"]

    @pytest.mark.asyncio
    async def test_processor_error_raises_and_records_nothing(self, ledger, store, http_client):
        http_client.post_status_code = 500
        payment_data = payment_record("default", "10.00", datetime.now(timezone.utc))

        with pytest.raises(DownstreamForwardError) as exc_info:
            await ledger.forward(payment_data, PROCESSOR_URL)

        assert exc_info.value.status_code == 500
        assert await store.hash_get_all(f"payment_{payment_data['correlationId']}") == {}
        assert "payments_by_date" not in store.sorted_sets

    @pytest.mark.asyncio
    async def test_network_error_raises_downstream_forward_error(self, ledger, http_client):
        http_client.post_error = TimeoutError("read timeout")
        payment_data = payment_record("default", "10.00", datetime.now(timezone.utc))

        with pytest.raises(DownstreamForwardError):
            await ledger.forward(payment_data, PROCESSOR_URL)


class TestRecordForwarded:

    @pytest.mark.asyncio
    async def test_missing_requested_at_skips_the_index(self, ledger, store):
        correlation_id = str(uuid4())

        await ledger.record_forwarded({"correlationId": correlation_id, "amount": "5.00", "processor": "default"})

        assert (await store.hash_get_all(f"payment_{correlation_id}"))["amount"] == "5.00"
        assert "payments_by_date" not in store.sorted_sets

    @pytest.mark.asyncio
    async def test_missing_correlation_id_is_a_no_op(self, ledger, store):
        await ledger.record_forwarded({"amount": "5.00", "requestedAt": format_timestamp(datetime.now(timezone.utc))})

        assert store.hashes == {}
        assert store.sorted_sets == {}


class TestQueryByRange:

    @pytest.fixture
    def base_time(self):
        return datetime(2025, 7, 15, 12, 0, 0, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_aggregates_payments_by_processor(self, ledger, base_time):
        await ledger.record_forwarded(payment_record("default", "100", base_time))
        await ledger.record_forwarded(payment_record("fallback", "50", base_time + timedelta(seconds=1)))

        summary = await ledger.query_by_range(base_time - timedelta(minutes=1), base_time + timedelta(minutes=1))

        assert summary.model_dump() == {
            "default": {"totalRequests": 1, "totalAmount": 100.0},
            "fallback": {"totalRequests": 1, "totalAmount": 50.0},
        }

    @pytest.mark.asyncio
    async def test_empty_range_yields_zero_for_both_processors(self, ledger, base_time):
        await ledger.record_forwarded(payment_record("default", "100", base_time))

        summary = await ledger.query_by_range(base_time + timedelta(hours=1), base_time + timedelta(hours=2))

        assert summary == PaymentsSummary()
        assert summary.default.totalRequests == 0
        assert summary.fallback.totalAmount == 0.0

    @pytest.mark.asyncio
    async def test_range_bounds_are_inclusive(self, ledger, base_time):
        await ledger.record_forwarded(payment_record("default", "10", base_time))
        await ledger.record_forwarded(payment_record("default", "20", base_time + timedelta(seconds=10)))

        summary = await ledger.query_by_range(base_time, base_time + timedelta(seconds=10))

        assert summary.default.totalRequests == 2
        assert summary.default.totalAmount == 30.0

    @pytest.mark.asyncio
    async def test_to_without_from_is_invalid(self, ledger, base_time):
        with pytest.raises(InvalidRangeError):
            await ledger.query_by_range(None, base_time)

    @pytest.mark.asyncio
    async def test_no_bounds_aggregates_everything(self, ledger, base_time):
        await ledger.record_forwarded(payment_record("default", "10", base_time - timedelta(days=365)))
        await ledger.record_forwarded(payment_record("fallback", "20", base_time + timedelta(days=365)))

        summary = await ledger.query_by_range()

        assert summary.default.totalRequests == 1
        assert summary.fallback.totalRequests == 1

    @pytest.mark.asyncio
    async def test_open_ended_range_stops_at_now(self, ledger):
        now = datetime.now(timezone.utc)
        await ledger.record_forwarded(payment_record("default", "10", now - timedelta(minutes=5)))
        await ledger.record_forwarded(payment_record("default", "99", now + timedelta(days=1)))

        summary = await ledger.query_by_range(now - timedelta(hours=1))

        assert summary.default.totalRequests == 1
        assert summary.default.totalAmount == 10.0

    @pytest.mark.asyncio
    async def test_naive_bounds_are_treated_as_utc(self, ledger, base_time):
        await ledger.record_forwarded(payment_record("fallback", "7.50", base_time))

        summary = await ledger.query_by_range(datetime(2025, 7, 15, 11, 59), datetime(2025, 7, 15, 12, 1))

        assert summary.fallback.totalRequests == 1

    @pytest.mark.asyncio
    async def test_amounts_are_summed_without_float_drift(self, ledger, base_time):
        for amount in ("19.90", "100.33", "0.01", "999.99"):
            await ledger.record_forwarded(payment_record("default", amount, base_time))

        summary = await ledger.query_by_range()

        assert summary.default.totalAmount == float(Decimal("1120.23"))
        assert summary.default.totalRequests == 4
