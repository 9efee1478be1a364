"""
Queue transport adapters
A thin MessageQueue protocol over an at-least-once broker, with in-memory and Redis-list implementations
"""

import asyncio
import heapq
import json
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple, runtime_checkable
from uuid import uuid4

import redis.asyncio as aioredis

from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import utcnow

logger = get_safe_logger("channel_sync.queue")


@dataclass
class Delivery:
    """One received message plus its delivery bookkeeping"""
    channel: str
    body: str
    delivery_id: str
    attempts: int = 1
    enqueued_at: Optional[str] = None
    # Transport-specific handle used to ack (the raw Redis list element)
    handle: Any = None

    def to_envelope(self, **overrides) -> Dict[str, Any]:
        envelope = {
            "id": self.delivery_id,
            "body": self.body,
            "attempts": self.attempts,
            "enqueued_at": self.enqueued_at,
        }
        envelope.update(overrides)
        return envelope


def new_envelope(body: str) -> Dict[str, Any]:
    return {"id": str(uuid4()), "body": body, "attempts": 1, "enqueued_at": utcnow().isoformat()}


def dead_letter_channel(channel: str) -> str:
    return f"{channel}.dead"


@runtime_checkable
class MessageQueue(Protocol):
    async def publish(self, channel: str, body: str) -> None: ...

    async def receive(self, channel: str, timeout: float = 5.0) -> Optional[Delivery]: ...

    async def ack(self, delivery: Delivery) -> None: ...

    async def retry(self, delivery: Delivery, delay_seconds: float) -> None: ...

    async def dead_letter(self, delivery: Delivery, reason: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryQueue:
    """
    Process-local queue for tests and single-process development.

    Delayed redeliveries are held until their due time on the injected clock.
    """

    def __init__(self, clock: Optional[Callable[[], float]] = None):
        self._clock = clock or time.monotonic
        self._ready: Dict[str, asyncio.Queue] = {}
        self._delayed: Dict[str, List[Tuple[float, int, Dict[str, Any]]]] = {}
        self._dead: Dict[str, List[Dict[str, Any]]] = {}
        self._seq = 0

    def _queue(self, channel: str) -> asyncio.Queue:
        if channel not in self._ready:
            self._ready[channel] = asyncio.Queue()
        return self._ready[channel]

    def _promote_due(self, channel: str) -> None:
        delayed = self._delayed.get(channel, [])
        now = self._clock()
        while delayed and delayed[0][0] <= now:
            _, _, envelope = heapq.heappop(delayed)
            self._queue(channel).put_nowait(envelope)

    async def publish(self, channel: str, body: str) -> None:
        self._queue(channel).put_nowait(new_envelope(body))

    async def receive(self, channel: str, timeout: float = 5.0) -> Optional[Delivery]:
        self._promote_due(channel)
        queue = self._queue(channel)
        try:
            if timeout <= 0:
                envelope = queue.get_nowait()
            else:
                envelope = await asyncio.wait_for(queue.get(), timeout)
        except (asyncio.QueueEmpty, asyncio.TimeoutError):
            return None

        return Delivery(
            channel=channel,
            body=envelope["body"],
            delivery_id=envelope["id"],
            attempts=envelope["attempts"],
            enqueued_at=envelope.get("enqueued_at"),
        )

    async def ack(self, delivery: Delivery) -> None:
        return None

    async def retry(self, delivery: Delivery, delay_seconds: float) -> None:
        self._seq += 1
        envelope = delivery.to_envelope(attempts=delivery.attempts + 1)
        heapq.heappush(
            self._delayed.setdefault(delivery.channel, []),
            (self._clock() + delay_seconds, self._seq, envelope),
        )

    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        self._dead.setdefault(delivery.channel, []).append(delivery.to_envelope(reason=reason))

    async def close(self) -> None:
        return None

    def pending(self, channel: str) -> int:
        """Ready plus delayed messages on a channel."""
        return self._queue(channel).qsize() + len(self._delayed.get(channel, []))

    def dead_letters(self, channel: str) -> List[Dict[str, Any]]:
        return list(self._dead.get(channel, []))


class RedisQueue:
    """
    Reliable-queue pattern on Redis lists.

    ``{channel}`` holds ready envelopes, ``{channel}:processing`` holds in-flight
    ones until acked, ``{channel}:delayed`` is a sorted set of redeliveries keyed
    by due time and ``{channel}.dead`` collects dead letters.
    """

    def __init__(self, redis_client: aioredis.Redis):
        self.redis = redis_client

    @classmethod
    def from_url(cls, url: str) -> "RedisQueue":
        return cls(aioredis.from_url(url, decode_responses=True))

    @staticmethod
    def _processing(channel: str) -> str:
        return f"{channel}:processing"

    @staticmethod
    def _delayed(channel: str) -> str:
        return f"{channel}:delayed"

    async def publish(self, channel: str, body: str) -> None:
        await self.redis.lpush(channel, json.dumps(new_envelope(body)))

    async def _promote_due(self, channel: str) -> None:
        due = await self.redis.zrangebyscore(self._delayed(channel), 0, time.time())
        promoted = 0
        for raw in due:
            # zrem guards against two consumers promoting the same envelope
            if await self.redis.zrem(self._delayed(channel), raw):
                await self.redis.lpush(channel, raw)
                promoted += 1
        if promoted:
            logger.debug("delayed_messages_promoted", channel=channel, count=promoted)

    async def receive(self, channel: str, timeout: float = 5.0) -> Optional[Delivery]:
        await self._promote_due(channel)
        raw = await self.redis.blmove(channel, self._processing(channel), timeout, src="RIGHT", dest="LEFT")
        if raw is None:
            return None

        envelope = json.loads(raw)
        return Delivery(
            channel=channel,
            body=envelope["body"],
            delivery_id=envelope["id"],
            attempts=envelope.get("attempts", 1),
            enqueued_at=envelope.get("enqueued_at"),
            handle=raw,
        )

    async def ack(self, delivery: Delivery) -> None:
        await self.redis.lrem(self._processing(delivery.channel), 1, delivery.handle)

    async def retry(self, delivery: Delivery, delay_seconds: float) -> None:
        envelope = json.dumps(delivery.to_envelope(attempts=delivery.attempts + 1))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing(delivery.channel), 1, delivery.handle)
            pipe.zadd(self._delayed(delivery.channel), {envelope: time.time() + delay_seconds})
            await pipe.execute()

    async def dead_letter(self, delivery: Delivery, reason: str) -> None:
        envelope = json.dumps(delivery.to_envelope(reason=reason, dead_lettered_at=utcnow().isoformat()))
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.lrem(self._processing(delivery.channel), 1, delivery.handle)
            pipe.lpush(dead_letter_channel(delivery.channel), envelope)
            await pipe.execute()

    async def close(self) -> None:
        await self.redis.aclose()
