import asyncio
import logging
from typing import Any, Dict, Mapping

from pydantic import ValidationError

from gateway.domain import codec
from gateway.domain.errors import MalformedMessageError
from gateway.domain.health_check import HealthCheckClient
from gateway.domain.ledger import PAYMENT_STREAM, PaymentLedger
from gateway.domain.models import DEFAULT, FALLBACK, PaymentProcessRequest
from gateway.domain.protocols import CoordinationStore, RawFields
from gateway.domain.selector import select_processor

logger = logging.getLogger(__name__)

CONSUMER_GROUP = "payment_processors"


class PaymentWorker:
    """Consumer-group member that forwards queued payments to the healthier processor.

    A message is acknowledged only after the processor accepted it and the
    ledger recorded it. Anything else leaves it in the pending list, from
    where ``process_pending_payments`` picks it up again.
    """

    def __init__(
        self,
        store: CoordinationStore,
        ledger: PaymentLedger,
        health_check: HealthCheckClient,
        processor_urls: Dict[str, str],
        consumer_name: str,
        stream_name: str = PAYMENT_STREAM,
        group_name: str = CONSUMER_GROUP,
        group_start_id: str = "0",
        pending_batch_size: int = 10,
        min_idle_ms: int = 1000,
        reclaim_all_consumers: bool = True,
    ) -> None:
        self.store = store
        self.ledger = ledger
        self.health_check = health_check
        self.processor_urls = processor_urls
        self.consumer_name = consumer_name
        self.stream_name = stream_name
        self.group_name = group_name
        self.group_start_id = group_start_id
        self.pending_batch_size = pending_batch_size
        self.min_idle_ms = min_idle_ms
        self.reclaim_all_consumers = reclaim_all_consumers

    async def ensure_consumer_group(self) -> None:
        created = await self.store.stream_create_group(
            self.stream_name, self.group_name, self.group_start_id
        )
        if created:
            logger.info(f"Created consumer group {self.group_name} on {self.stream_name}")
        else:
            logger.debug(f"Consumer group {self.group_name} already exists")

    async def process_next_payment(self) -> bool:
        """Process the next new message. Returns True if a payment was forwarded."""
        messages = await self.store.stream_read_group(
            self.group_name, self.consumer_name, self.stream_name, count=1
        )

        if not messages:
            return False

        message = messages[0]
        return await self.handle_message(message.message_id, message.fields)

    async def process_pending_payments(self) -> int:
        """Reclaim idle pending messages and retry them. Returns how many were forwarded."""
        consumer = None if self.reclaim_all_consumers else self.consumer_name
        pending = await self.store.stream_pending(
            self.stream_name, self.group_name, consumer, self.pending_batch_size
        )

        forwarded = 0
        for entry in pending:
            if entry.idle_ms < self.min_idle_ms:
                continue
            claimed = await self.store.stream_claim(
                self.stream_name,
                self.group_name,
                self.consumer_name,
                [entry.message_id],
                self.min_idle_ms,
            )
            for message in claimed:
                if not message.fields:
                    continue
                logger.info(
                    f"Retrying pending message {message.message_id} "
                    f"(delivered {entry.times_delivered} times, owned by {entry.consumer})"
                )
                if await self.handle_message(message.message_id, message.fields):
                    forwarded += 1

        return forwarded

    async def handle_message(self, message_id: str, raw_fields: RawFields) -> bool:
        """Route one message. Returns True when it was forwarded and acknowledged."""
        try:
            payment_data = self._decode(raw_fields)
        except MalformedMessageError as e:
            # Retrying cannot fix a payload that does not validate
            logger.error(f"Dropping malformed message {message_id}: {e}")
            await self._acknowledge(message_id)
            return False

        correlation_id = payment_data["correlationId"]

        try:
            default_health, fallback_health = await self._fetch_health()
        except Exception as e:
            logger.error(f"Health check error for message {message_id}: {e}")
            return False

        processor = select_processor(default_health, fallback_health)
        if processor is None:
            await self.health_check.reset_cache()
            logger.warning(f"No processor selectable for payment {correlation_id}, will retry")
            return False

        payment_data["processor"] = processor

        try:
            await self.ledger.forward(payment_data, self.processor_urls[processor])
            await self._acknowledge(message_id)
        except Exception as e:
            # Not acknowledged: the message stays pending for reprocessing
            logger.error(f"Unable to process message {message_id}: {e}")
            return False

        logger.debug(f"Payment {correlation_id} forwarded to {processor}")
        return True

    def _decode(self, raw_fields: RawFields) -> Dict[str, Any]:
        payment_data = codec.unflatten(raw_fields)
        try:
            PaymentProcessRequest.model_validate(payment_data)
        except ValidationError as e:
            raise MalformedMessageError(str(e)) from e
        return payment_data

    async def _fetch_health(self):
        results = await asyncio.gather(
            self.health_check.get_health(DEFAULT),
            self.health_check.get_health(FALLBACK),
            return_exceptions=True,
        )
        for result in results:
            if isinstance(result, BaseException):
                raise result
        return results

    async def _acknowledge(self, message_id: str) -> None:
        await self.store.stream_ack(self.stream_name, self.group_name, [message_id])
