from dataclasses import dataclass
from typing import Any, List, Mapping, Optional, Protocol, Sequence, Union

# A stream entry's fields as the transport hands them over: either already
# paired up, or as the raw alternating name/value list.
RawFields = Union[Mapping[str, str], Sequence[str]]


@dataclass(frozen=True)
class StreamMessage:
    message_id: str
    fields: RawFields


@dataclass(frozen=True)
class PendingMessage:
    message_id: str
    consumer: str
    idle_ms: int
    times_delivered: int


class HttpResponse(Protocol):
    status_code: int

    def json(self) -> Any:
        """Parse the response as JSON."""
        ...


class HttpClient(Protocol):
    async def get(self, url: str) -> HttpResponse:
        """Make an HTTP GET request."""
        ...

    async def post(self, url: str, json: Any) -> HttpResponse:
        """Make an HTTP POST request with a JSON body."""
        ...


class CoordinationStore(Protocol):
    """Shared key/value, hash, sorted-set and stream service used by every instance."""

    async def get(self, key: str) -> Optional[str]:
        ...

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        ...

    async def set_if_absent(self, key: str, value: str) -> bool:
        ...

    async def refresh_expiry(self, key: str, ttl_seconds: int) -> None:
        ...

    async def delete(self, keys: Sequence[str]) -> None:
        ...

    async def hash_set_fields(self, key: str, fields: Mapping[str, str]) -> None:
        ...

    async def hash_set_if_absent(self, key: str, field: str, value: str) -> bool:
        ...

    async def hash_get_all(self, key: str) -> RawFields:
        ...

    async def sorted_set_add(self, key: str, score: float, member: str) -> None:
        ...

    async def sorted_set_range(self, key: str) -> List[str]:
        ...

    async def sorted_set_range_by_score(self, key: str, min_score: float, max_score: float) -> List[str]:
        ...

    async def stream_append(self, stream: str, fields: Mapping[str, str]) -> str:
        ...

    async def stream_create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        """Create a consumer group; returns False when it already exists."""
        ...

    async def stream_read_group(
        self, group: str, consumer: str, stream: str, count: int = 1, block_ms: Optional[int] = None
    ) -> List[StreamMessage]:
        ...

    async def stream_ack(self, stream: str, group: str, message_ids: Sequence[str]) -> int:
        ...

    async def stream_pending(
        self, stream: str, group: str, consumer: Optional[str], count: int
    ) -> List[PendingMessage]:
        ...

    async def stream_claim(
        self, stream: str, group: str, consumer: str, message_ids: Sequence[str], min_idle_ms: int
    ) -> List[StreamMessage]:
        ...

    async def close(self) -> None:
        ...
