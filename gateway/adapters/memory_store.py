import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from gateway.domain import codec
from gateway.domain.protocols import PendingMessage, RawFields, StreamMessage


@dataclass
class _PendingEntry:
    consumer: str
    delivered_at: float
    times_delivered: int = 1


@dataclass
class _ConsumerGroup:
    last_delivered: int = 0
    pending: Dict[str, _PendingEntry] = field(default_factory=dict)


@dataclass
class _Stream:
    # (message_id, alternating name/value list), like entries travel on the wire
    entries: List[Tuple[str, List[str]]] = field(default_factory=list)
    groups: Dict[str, _ConsumerGroup] = field(default_factory=dict)
    last_ms: int = 0
    last_seq: int = 0


class InMemoryCoordinationStore:
    """In-memory coordination store for development/testing.

    Mirrors the Redis semantics the gateway relies on (expiring keys,
    set-if-absent, consumer groups with a pending list) inside one process.
    """

    def __init__(self):
        self.values: Dict[str, str] = {}
        self.expires: Dict[str, float] = {}
        self.hashes: Dict[str, Dict[str, str]] = {}
        self.sorted_sets: Dict[str, Dict[str, float]] = {}
        self.streams: Dict[str, _Stream] = {}

    def _expire_if_due(self, key: str) -> None:
        deadline = self.expires.get(key)
        if deadline is not None and time.monotonic() >= deadline:
            self.values.pop(key, None)
            self.hashes.pop(key, None)
            del self.expires[key]

    def _exists(self, key: str) -> bool:
        self._expire_if_due(key)
        return key in self.values or key in self.hashes

    async def get(self, key: str) -> Optional[str]:
        self._expire_if_due(key)
        return self.values.get(key)

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        self.values[key] = value
        self.expires[key] = time.monotonic() + ttl_seconds

    async def set_if_absent(self, key: str, value: str) -> bool:
        if self._exists(key):
            return False
        self.values[key] = value
        self.expires.pop(key, None)
        return True

    async def refresh_expiry(self, key: str, ttl_seconds: int) -> None:
        if self._exists(key):
            self.expires[key] = time.monotonic() + ttl_seconds

    async def delete(self, keys: Sequence[str]) -> None:
        for key in keys:
            self.values.pop(key, None)
            self.hashes.pop(key, None)
            self.expires.pop(key, None)

    async def hash_set_fields(self, key: str, fields: Mapping[str, str]) -> None:
        self._expire_if_due(key)
        self.hashes.setdefault(key, {}).update({k: str(v) for k, v in fields.items()})

    async def hash_set_if_absent(self, key: str, field: str, value: str) -> bool:
        self._expire_if_due(key)
        record = self.hashes.setdefault(key, {})
        if field in record:
            return False
        record[field] = value
        return True

    async def hash_get_all(self, key: str) -> RawFields:
        self._expire_if_due(key)
        return dict(self.hashes.get(key, {}))

    async def sorted_set_add(self, key: str, score: float, member: str) -> None:
        self.sorted_sets.setdefault(key, {})[member] = score

    def _sorted_members(self, key: str) -> List[Tuple[str, float]]:
        # Ties on score are ordered lexicographically by member, as in Redis
        return sorted(self.sorted_sets.get(key, {}).items(), key=lambda item: (item[1], item[0]))

    async def sorted_set_range(self, key: str) -> List[str]:
        return [member for member, _ in self._sorted_members(key)]

    async def sorted_set_range_by_score(self, key: str, min_score: float, max_score: float) -> List[str]:
        return [
            member for member, score in self._sorted_members(key)
            if min_score <= score <= max_score
        ]

    def _next_id(self, stream: _Stream) -> str:
        now_ms = int(time.time() * 1000)
        if now_ms > stream.last_ms:
            stream.last_ms, stream.last_seq = now_ms, 0
        else:
            stream.last_seq += 1
        return f"{stream.last_ms}-{stream.last_seq}"

    async def stream_append(self, stream: str, fields: Mapping[str, str]) -> str:
        target = self.streams.setdefault(stream, _Stream())
        message_id = self._next_id(target)
        target.entries.append((message_id, codec.to_field_list(fields)))
        return message_id

    async def stream_create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        target = self.streams.setdefault(stream, _Stream())
        if group in target.groups:
            return False
        # "$" starts after the current tail, anything else from the beginning
        start = len(target.entries) if start_id == "$" else 0
        target.groups[group] = _ConsumerGroup(last_delivered=start)
        return True

    def _group(self, stream: str, group: str) -> Tuple[_Stream, _ConsumerGroup]:
        target = self.streams.get(stream)
        if target is None or group not in target.groups:
            raise KeyError(f"NOGROUP No such key '{stream}' or consumer group '{group}'")
        return target, target.groups[group]

    async def stream_read_group(
        self, group: str, consumer: str, stream: str, count: int = 1, block_ms: Optional[int] = None
    ) -> List[StreamMessage]:
        target, consumer_group = self._group(stream, group)
        batch = target.entries[consumer_group.last_delivered:consumer_group.last_delivered + count]
        consumer_group.last_delivered += len(batch)

        now = time.monotonic()
        for message_id, _ in batch:
            consumer_group.pending[message_id] = _PendingEntry(consumer=consumer, delivered_at=now)

        return [StreamMessage(message_id=message_id, fields=list(fields)) for message_id, fields in batch]

    async def stream_ack(self, stream: str, group: str, message_ids: Sequence[str]) -> int:
        _, consumer_group = self._group(stream, group)
        acknowledged = 0
        for message_id in message_ids:
            if consumer_group.pending.pop(message_id, None) is not None:
                acknowledged += 1
        return acknowledged

    async def stream_pending(
        self, stream: str, group: str, consumer: Optional[str], count: int
    ) -> List[PendingMessage]:
        _, consumer_group = self._group(stream, group)
        now = time.monotonic()
        result = []
        for message_id, entry in consumer_group.pending.items():
            if consumer is not None and entry.consumer != consumer:
                continue
            result.append(PendingMessage(
                message_id=message_id,
                consumer=entry.consumer,
                idle_ms=int((now - entry.delivered_at) * 1000),
                times_delivered=entry.times_delivered,
            ))
            if len(result) >= count:
                break
        return result

    async def stream_claim(
        self, stream: str, group: str, consumer: str, message_ids: Sequence[str], min_idle_ms: int
    ) -> List[StreamMessage]:
        target, consumer_group = self._group(stream, group)
        entries = dict(target.entries)
        now = time.monotonic()
        claimed = []
        for message_id in message_ids:
            entry = consumer_group.pending.get(message_id)
            if entry is None or (now - entry.delivered_at) * 1000 < min_idle_ms:
                continue
            entry.consumer = consumer
            entry.delivered_at = now
            entry.times_delivered += 1
            claimed.append(StreamMessage(message_id=message_id, fields=list(entries.get(message_id, []))))
        return claimed

    async def close(self) -> None:
        pass
