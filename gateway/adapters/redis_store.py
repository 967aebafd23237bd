import logging
from typing import Awaitable, List, Mapping, Optional, Sequence, TypeVar

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import ResponseError
from redis.exceptions import TimeoutError as RedisTimeoutError

from gateway.domain.errors import StoreUnavailableError
from gateway.domain.protocols import PendingMessage, RawFields, StreamMessage

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RedisCoordinationStore:
    """Redis-backed coordination store for production."""

    def __init__(self, redis_client: redis.Redis):
        self.redis_client = redis_client

    async def _run(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except (RedisConnectionError, RedisTimeoutError) as e:
            logger.error(f"Redis {operation} failed: {e}")
            raise StoreUnavailableError(f"Redis connection error during {operation}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return await self._run("GET", self.redis_client.get(key))

    async def set_with_expiry(self, key: str, value: str, ttl_seconds: int) -> None:
        await self._run("SETEX", self.redis_client.setex(key, ttl_seconds, value))

    async def set_if_absent(self, key: str, value: str) -> bool:
        return bool(await self._run("SETNX", self.redis_client.setnx(key, value)))

    async def refresh_expiry(self, key: str, ttl_seconds: int) -> None:
        await self._run("EXPIRE", self.redis_client.expire(key, ttl_seconds))

    async def delete(self, keys: Sequence[str]) -> None:
        if keys:
            await self._run("DEL", self.redis_client.delete(*keys))

    async def hash_set_fields(self, key: str, fields: Mapping[str, str]) -> None:
        if fields:
            await self._run("HSET", self.redis_client.hset(key, mapping=dict(fields)))

    async def hash_set_if_absent(self, key: str, field: str, value: str) -> bool:
        return bool(await self._run("HSETNX", self.redis_client.hsetnx(key, field, value)))

    async def hash_get_all(self, key: str) -> RawFields:
        return await self._run("HGETALL", self.redis_client.hgetall(key))

    async def sorted_set_add(self, key: str, score: float, member: str) -> None:
        await self._run("ZADD", self.redis_client.zadd(key, {member: score}))

    async def sorted_set_range(self, key: str) -> List[str]:
        return await self._run("ZRANGE", self.redis_client.zrange(key, 0, -1))

    async def sorted_set_range_by_score(self, key: str, min_score: float, max_score: float) -> List[str]:
        return await self._run("ZRANGEBYSCORE", self.redis_client.zrangebyscore(key, min_score, max_score))

    async def stream_append(self, stream: str, fields: Mapping[str, str]) -> str:
        message_id = await self._run("XADD", self.redis_client.xadd(stream, dict(fields)))
        logger.debug(f"Message {message_id} appended to {stream}")
        return message_id

    async def stream_create_group(self, stream: str, group: str, start_id: str = "0") -> bool:
        try:
            await self._run(
                "XGROUP CREATE",
                self.redis_client.xgroup_create(stream, group, id=start_id, mkstream=True),
            )
        except ResponseError as e:
            if "BUSYGROUP" in str(e):
                return False
            raise
        return True

    async def stream_read_group(
        self, group: str, consumer: str, stream: str, count: int = 1, block_ms: Optional[int] = None
    ) -> List[StreamMessage]:
        # block=None keeps the read non-blocking; BLOCK 0 would wait forever
        result = await self._run(
            "XREADGROUP",
            self.redis_client.xreadgroup(group, consumer, {stream: ">"}, count=count, block=block_ms or None),
        )
        if not result:
            return []

        # RESP2: [[stream_name, [(msg_id, fields)]]], RESP3: {stream_name: [[(msg_id, fields)]]}
        if isinstance(result, dict):
            entries = [entry for value in result.values() for batch in value for entry in batch]
        else:
            entries = [entry for _, batch in result for entry in batch]

        return [StreamMessage(message_id=message_id, fields=fields) for message_id, fields in entries]

    async def stream_ack(self, stream: str, group: str, message_ids: Sequence[str]) -> int:
        return await self._run("XACK", self.redis_client.xack(stream, group, *message_ids))

    async def stream_pending(
        self, stream: str, group: str, consumer: Optional[str], count: int
    ) -> List[PendingMessage]:
        entries = await self._run(
            "XPENDING",
            self.redis_client.xpending_range(stream, group, min="-", max="+", count=count, consumername=consumer),
        )
        return [
            PendingMessage(
                message_id=entry["message_id"],
                consumer=entry["consumer"],
                idle_ms=entry["time_since_delivered"],
                times_delivered=entry["times_delivered"],
            )
            for entry in entries
        ]

    async def stream_claim(
        self, stream: str, group: str, consumer: str, message_ids: Sequence[str], min_idle_ms: int
    ) -> List[StreamMessage]:
        claimed = await self._run(
            "XCLAIM",
            self.redis_client.xclaim(stream, group, consumer, min_idle_ms, list(message_ids)),
        )
        # Entries trimmed from the stream come back without fields
        return [
            StreamMessage(message_id=message_id, fields=fields or {})
            for message_id, fields in claimed
        ]

    async def close(self) -> None:
        await self.redis_client.aclose()
