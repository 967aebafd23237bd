from decimal import Decimal
from typing import Annotated, Literal, Optional
from datetime import datetime, timezone
from uuid import UUID

from pydantic import UUID4, BaseModel, Field, field_serializer

DEFAULT = "default"
FALLBACK = "fallback"
PROCESSORS = (DEFAULT, FALLBACK)

ProcessorName = Literal["default", "fallback"]


class PaymentRequest(BaseModel):
    """Client payment request - what comes from API"""
    correlationId: UUID4
    amount: Annotated[Decimal, Field(gt=Decimal("0.00"))]


class PaymentProcessRequest(BaseModel):
    """Payment as sent to the processors once it left the queue"""
    correlationId: UUID
    amount: Annotated[Decimal, Field(gt=Decimal("0.00"))]
    requestedAt: datetime
    processor: Optional[ProcessorName] = None

    @field_serializer("amount")
    def serialize_amount(self, amount: Decimal) -> float:
        return float(amount)

    @field_serializer("requestedAt")
    def serialize_requested_at(self, requested_at: datetime) -> str:
        return format_timestamp(requested_at)


class ProcessorSummary(BaseModel):
    totalRequests: int = 0
    totalAmount: float = 0.0


class PaymentsSummary(BaseModel):
    default: ProcessorSummary = Field(default_factory=ProcessorSummary)
    fallback: ProcessorSummary = Field(default_factory=ProcessorSummary)


class HealthStatus(BaseModel):
    failing: bool
    min_response_time: float
    latency: float = 0.0


def as_utc(moment: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def format_timestamp(moment: datetime) -> str:
    """Render a UTC timestamp with microsecond precision, e.g. 2025-07-15T12:34:56.000123Z."""
    return as_utc(moment).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def parse_timestamp(value: str) -> datetime:
    return as_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def timestamp_score(moment: datetime) -> float:
    """Sorted-set score for a moment: fractional UNIX seconds."""
    return as_utc(moment).timestamp()
