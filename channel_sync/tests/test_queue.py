"""
Tests for the in-memory queue transport, message codecs and the consumer failure policy
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest
from pydantic import ValidationError as PydanticValidationError

from channel_sync.errors import (
    AuthenticationError,
    CircuitOpenError,
    MappingError,
    RateLimitError,
    ServerError,
    ValidationError,
)
from channel_sync.queue import (
    InMemoryQueue,
    MessageKind,
    QueueConsumer,
    RedisQueue,
    build_outbound_message,
    parse_outbound_message,
)
from channel_sync.queue.transport import Delivery
from channel_sync.utils.timeutils import utcnow

from .fixtures import FakeClock

CHANNEL = "sync.outbound"


class ScriptedConsumer(QueueConsumer):
    """Raises the next scripted outcome for every delivery; None means success"""

    def __init__(self, queue, outcomes, **kwargs):
        super().__init__(queue, CHANNEL, **kwargs)
        self.outcomes = list(outcomes)
        self.seen = []

    async def handle(self, delivery):
        self.seen.append((delivery.body, delivery.attempts))
        outcome = self.outcomes.pop(0)
        if outcome is not None:
            raise outcome


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def queue(clock):
    return InMemoryQueue(clock=clock)


class TestMessages:

    def test_round_trip_through_discriminator(self):
        message = build_outbound_message(MessageKind.RESERVATION_CREATE, config_id="cfg-1", entity_id="res-1")

        decoded = parse_outbound_message(message.model_dump_json())

        assert type(decoded) is type(message)
        assert decoded.message_kind == MessageKind.RESERVATION_CREATE
        assert decoded.entity_id == "res-1"

    def test_unknown_kind_rejected(self):
        with pytest.raises(PydanticValidationError):
            parse_outbound_message({"kind": "invoice.create", "config_id": "cfg-1", "entity_id": "x"})

    def test_date_range_required_and_ordered(self):
        with pytest.raises(PydanticValidationError):
            parse_outbound_message({"kind": "availability.update", "config_id": "cfg-1", "entity_id": "rt-1"})
        with pytest.raises(PydanticValidationError):
            parse_outbound_message({
                "kind": "rate.update",
                "config_id": "cfg-1",
                "entity_id": "rt-1",
                "date_from": "2025-03-05",
                "date_to": "2025-03-01",
            })

    def test_inventory_messages_target_room_types(self):
        assert MessageKind.AVAILABILITY_UPDATE.entity_kind.value == "room_type"
        assert MessageKind.GUEST_UPDATE.entity_kind.value == "guest"


class TestInMemoryQueue:

    @pytest.mark.asyncio
    async def test_fifo_delivery(self, queue):
        await queue.publish(CHANNEL, "a")
        await queue.publish(CHANNEL, "b")

        first = await queue.receive(CHANNEL, timeout=0)
        second = await queue.receive(CHANNEL, timeout=0)

        assert (first.body, second.body) == ("a", "b")
        assert first.attempts == 1
        assert await queue.receive(CHANNEL, timeout=0) is None

    @pytest.mark.asyncio
    async def test_retry_is_held_until_due(self, queue, clock):
        await queue.publish(CHANNEL, "a")
        delivery = await queue.receive(CHANNEL, timeout=0)

        await queue.retry(delivery, 10)
        assert queue.pending(CHANNEL) == 1
        assert await queue.receive(CHANNEL, timeout=0) is None

        clock.advance(10)
        redelivered = await queue.receive(CHANNEL, timeout=0)
        assert redelivered.delivery_id == delivery.delivery_id
        assert redelivered.attempts == 2


class TestQueueConsumer:

    @pytest.mark.asyncio
    async def test_success_is_acked(self, queue):
        consumer = ScriptedConsumer(queue, [None])
        await queue.publish(CHANNEL, "a")

        assert await consumer.process_next(timeout=0) is True
        assert queue.pending(CHANNEL) == 0
        assert queue.dead_letters(CHANNEL) == []

    @pytest.mark.asyncio
    async def test_empty_queue(self, queue):
        consumer = ScriptedConsumer(queue, [])
        assert await consumer.process_next(timeout=0) is False

    @pytest.mark.asyncio
    async def test_retryable_error_redelivered_with_backoff(self, queue, clock):
        consumer = ScriptedConsumer(queue, [ServerError("boom"), ServerError("boom"), None], retry_base_delay=2.0)
        await queue.publish(CHANNEL, "a")

        await consumer.process_next(timeout=0)
        clock.advance(1)
        assert await consumer.process_next(timeout=0) is False

        clock.advance(1)
        await consumer.process_next(timeout=0)
        # Second failure waits twice as long
        clock.advance(3)
        assert await consumer.process_next(timeout=0) is False
        clock.advance(1)
        await consumer.process_next(timeout=0)

        assert consumer.seen == [("a", 1), ("a", 2), ("a", 3)]
        assert queue.pending(CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_dead_letter_after_max_attempts(self, queue, clock):
        consumer = ScriptedConsumer(queue, [ServerError("boom")] * 3, max_attempts=3, retry_base_delay=1.0)
        await queue.publish(CHANNEL, "a")

        for _ in range(3):
            await consumer.process_next(timeout=0)
            clock.advance(10)

        dead = queue.dead_letters(CHANNEL)
        assert len(dead) == 1
        assert dead[0]["attempts"] == 3
        assert dead[0]["reason"].startswith("server_error")
        assert queue.pending(CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_non_retryable_error_dead_lettered_immediately(self, queue):
        consumer = ScriptedConsumer(queue, [AuthenticationError("bad key")])
        await queue.publish(CHANNEL, "a")

        await consumer.process_next(timeout=0)

        assert len(queue.dead_letters(CHANNEL)) == 1
        assert queue.pending(CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_rejected_record_dead_lettered(self, queue):
        consumer = ScriptedConsumer(queue, [ValidationError("date_from is invalid")])
        await queue.publish(CHANNEL, "a")

        await consumer.process_next(timeout=0)

        assert queue.dead_letters(CHANNEL)[0]["reason"].startswith("validation_error")

    @pytest.mark.asyncio
    async def test_mapping_error_is_acked(self, queue):
        consumer = ScriptedConsumer(queue, [MappingError("room type not synced", entity_kind="room_type")])
        await queue.publish(CHANNEL, "a")

        await consumer.process_next(timeout=0)

        assert queue.pending(CHANNEL) == 0
        assert queue.dead_letters(CHANNEL) == []

    @pytest.mark.asyncio
    async def test_rate_limit_delay_uses_retry_after(self, queue, clock):
        consumer = ScriptedConsumer(queue, [RateLimitError("slow down", retry_after_ms=30_000), None])
        await queue.publish(CHANNEL, "a")

        await consumer.process_next(timeout=0)
        clock.advance(29)
        assert await consumer.process_next(timeout=0) is False

        clock.advance(1)
        assert await consumer.process_next(timeout=0) is True

    @pytest.mark.asyncio
    async def test_open_circuit_is_dead_lettered_without_redelivery(self, queue):
        error = CircuitOpenError("hotel-1:1", utcnow(), utcnow() + timedelta(seconds=45))
        consumer = ScriptedConsumer(queue, [error])
        await queue.publish(CHANNEL, "a")

        assert await consumer.process_next(timeout=0) is True

        [dead] = queue.dead_letters(CHANNEL)
        assert dead["reason"].startswith("circuit_open")
        assert dead["attempts"] == 1
        assert queue.pending(CHANNEL) == 0

    def test_unexpected_exception_is_retried(self, queue):
        consumer = ScriptedConsumer(queue, [])
        delivery = Delivery(channel=CHANNEL, body="a", delivery_id="d-1", attempts=2)

        assert consumer.failure_action(RuntimeError("db down"), delivery).value == "retry"
        assert consumer.redelivery_delay(RuntimeError("db down"), delivery) == 4.0


class TestRedisQueue:

    @pytest.fixture
    def redis(self):
        client = MagicMock()
        client.lpush = AsyncMock()
        client.zrangebyscore = AsyncMock(return_value=[])
        client.zrem = AsyncMock(return_value=1)
        client.blmove = AsyncMock(return_value=None)
        client.lrem = AsyncMock()

        pipe = MagicMock()
        pipe.execute = AsyncMock(return_value=[])
        client.pipeline.return_value.__aenter__ = AsyncMock(return_value=pipe)
        client.pipeline.return_value.__aexit__ = AsyncMock(return_value=False)
        client.pipe = pipe
        return client

    @pytest.mark.asyncio
    async def test_publish_pushes_envelope(self, redis):
        await RedisQueue(redis).publish(CHANNEL, '{"kind": "guest.create"}')

        channel, raw = redis.lpush.call_args.args
        envelope = json.loads(raw)
        assert channel == CHANNEL
        assert envelope["body"] == '{"kind": "guest.create"}'
        assert envelope["attempts"] == 1

    @pytest.mark.asyncio
    async def test_receive_promotes_due_and_moves_to_processing(self, redis):
        raw = json.dumps({"id": "m-1", "body": "a", "attempts": 2, "enqueued_at": None})
        redis.zrangebyscore.return_value = ["due-envelope"]
        redis.blmove.return_value = raw

        delivery = await RedisQueue(redis).receive(CHANNEL, timeout=1)

        redis.lpush.assert_awaited_once_with(CHANNEL, "due-envelope")
        redis.blmove.assert_awaited_once_with(CHANNEL, f"{CHANNEL}:processing", 1, src="RIGHT", dest="LEFT")
        assert delivery.delivery_id == "m-1"
        assert delivery.attempts == 2
        assert delivery.handle == raw

    @pytest.mark.asyncio
    async def test_receive_timeout(self, redis):
        assert await RedisQueue(redis).receive(CHANNEL, timeout=1) is None

    @pytest.mark.asyncio
    async def test_ack_removes_from_processing(self, redis):
        delivery = Delivery(channel=CHANNEL, body="a", delivery_id="m-1", handle="raw")

        await RedisQueue(redis).ack(delivery)

        redis.lrem.assert_awaited_once_with(f"{CHANNEL}:processing", 1, "raw")

    @pytest.mark.asyncio
    async def test_retry_schedules_next_attempt(self, redis):
        delivery = Delivery(channel=CHANNEL, body="a", delivery_id="m-1", attempts=1, handle="raw")

        await RedisQueue(redis).retry(delivery, 4.0)

        redis.pipe.lrem.assert_called_once_with(f"{CHANNEL}:processing", 1, "raw")
        key, scores = redis.pipe.zadd.call_args.args
        assert key == f"{CHANNEL}:delayed"
        [envelope] = scores
        assert json.loads(envelope)["attempts"] == 2
        redis.pipe.execute.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_dead_letter_destination(self, redis):
        delivery = Delivery(channel=CHANNEL, body="a", delivery_id="m-1", attempts=3, handle="raw")

        await RedisQueue(redis).dead_letter(delivery, reason="server_error: boom")

        key, raw = redis.pipe.lpush.call_args.args
        assert key == f"{CHANNEL}.dead"
        assert json.loads(raw)["reason"] == "server_error: boom"
