import asyncio
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Mapping, Optional

from gateway.domain import codec
from gateway.domain.errors import (
    DownstreamForwardError,
    DuplicateCorrelationIdError,
    InvalidRangeError,
)
from gateway.domain.models import (
    PROCESSORS,
    PaymentProcessRequest,
    PaymentRequest,
    PaymentsSummary,
    ProcessorSummary,
    format_timestamp,
    parse_timestamp,
    timestamp_score,
)
from gateway.domain.protocols import CoordinationStore, HttpClient

logger = logging.getLogger(__name__)

PAYMENT_KEY_PREFIX = "payment_"
PAYMENT_STREAM = "payment_stream"
PAYMENTS_BY_DATE = "payments_by_date"

# Status a processor answers with when it has already seen this correlationId
ALREADY_PROCESSED_STATUS = 422


class PaymentLedger:
    """Accepts payments once, queues them, and keeps the time-indexed record of forwarded ones."""

    def __init__(
        self,
        store: CoordinationStore,
        http_client: HttpClient,
        stream_name: str = PAYMENT_STREAM,
        index_key: str = PAYMENTS_BY_DATE,
    ):
        self.store = store
        self.http_client = http_client
        self.stream_name = stream_name
        self.index_key = index_key

    @staticmethod
    def payment_key(correlation_id: str) -> str:
        return f"{PAYMENT_KEY_PREFIX}{correlation_id}"

    async def submit(self, payment_request: PaymentRequest) -> Dict[str, str]:
        """Enqueue a payment for asynchronous delivery.

        The payment record key is claimed before anything is queued, so a
        second submission of the same correlationId fails with
        DuplicateCorrelationIdError even while the first is still in flight.
        """
        correlation_id = str(payment_request.correlationId)
        payment_key = self.payment_key(correlation_id)

        claimed = await self.store.hash_set_if_absent(payment_key, "correlationId", correlation_id)
        if not claimed:
            logger.info(f"Rejected duplicate payment {correlation_id}")
            raise DuplicateCorrelationIdError("correlationId already exists")

        stream_data = codec.flatten({
            "correlationId": correlation_id,
            "amount": payment_request.amount,
            "requestedAt": format_timestamp(datetime.now(timezone.utc)),
        })
        stream_data["enqueuedAtAsTimestamp"] = str(int(time.time()))

        try:
            message_id = await self.store.stream_append(self.stream_name, stream_data)
        except Exception:
            # Release the claim so the client can retry the same payment
            await self.store.delete([payment_key])
            raise

        logger.debug(f"Payment {correlation_id} enqueued as {message_id}")
        return stream_data

    async def forward(self, payment_data: Mapping[str, Any], processor_url: str) -> None:
        """Send a payment to a processor and record it once the processor accepted it."""
        body = PaymentProcessRequest.model_validate(payment_data).model_dump(
            include={"correlationId", "amount", "requestedAt"}, mode="json"
        )
        correlation_id = body["correlationId"]

        try:
            response = await self.http_client.post(f"{processor_url}/payments", json=body)
        except Exception as e:
            logger.error(f"Forwarding payment {correlation_id} to {processor_url} failed: {e}")
            raise DownstreamForwardError(f"Request to {processor_url} failed: {e}") from e

        if response.status_code == ALREADY_PROCESSED_STATUS:
            logger.info(f"Payment {correlation_id} was already processed by {processor_url}")
        elif response.status_code >= 400:
            logger.error(f"Processor {processor_url} rejected payment {correlation_id}: HTTP {response.status_code}")
            raise DownstreamForwardError(
                f"Processor {processor_url} answered HTTP {response.status_code}",
                status_code=response.status_code,
            )

        await self.record_forwarded(payment_data)

    async def record_forwarded(self, payment_data: Mapping[str, Any]) -> None:
        correlation_id = payment_data.get("correlationId")
        requested_at = payment_data.get("requestedAt")

        if not correlation_id:
            logger.warning("Not recording a payment without correlationId")
            return

        await self.store.hash_set_fields(self.payment_key(correlation_id), codec.flatten(payment_data))

        # Without requestedAt there is no score to index by
        if not requested_at:
            return

        score = timestamp_score(parse_timestamp(str(requested_at)))
        await self.store.sorted_set_add(self.index_key, score, str(correlation_id))
        logger.debug(f"Payment {correlation_id} recorded with score {score}")

    async def query_by_range(
        self, from_: Optional[datetime] = None, to: Optional[datetime] = None
    ) -> PaymentsSummary:
        """Aggregate forwarded payments whose requestedAt falls in [from_, to]."""
        if from_ is None and to is not None:
            raise InvalidRangeError("Invalid params")

        if from_ is None and to is None:
            correlation_ids = await self.store.sorted_set_range(self.index_key)
        else:
            to = to or datetime.now(timezone.utc)
            correlation_ids = await self.store.sorted_set_range_by_score(
                self.index_key, timestamp_score(from_), timestamp_score(to)
            )

        records = await self._fetch_records(correlation_ids)
        return self.aggregate(records)

    async def _fetch_records(self, correlation_ids: Iterable[str]) -> List[Dict[str, Any]]:
        raw_records = await asyncio.gather(
            *(self.store.hash_get_all(self.payment_key(cid)) for cid in correlation_ids)
        )
        return [codec.unflatten(raw) for raw in raw_records if raw]

    @staticmethod
    def aggregate(records: Iterable[Mapping[str, Any]]) -> PaymentsSummary:
        counts = {name: 0 for name in PROCESSORS}
        amounts = {name: Decimal("0") for name in PROCESSORS}

        for record in records:
            processor = record.get("processor")
            if processor not in counts:
                continue
            try:
                amount = Decimal(str(record.get("amount", "0")))
            except InvalidOperation:
                logger.warning(f"Skipping payment {record.get('correlationId')} with bad amount")
                continue
            counts[processor] += 1
            amounts[processor] += amount

        return PaymentsSummary(**{
            name: ProcessorSummary(totalRequests=counts[name], totalAmount=float(amounts[name]))
            for name in PROCESSORS
        })
