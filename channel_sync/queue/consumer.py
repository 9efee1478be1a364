"""
Sequential queue consumer
Processes one delivery at a time and turns handler failures into ack, redelivery or dead-letter decisions
"""

import asyncio
from enum import Enum
from typing import Optional

import structlog

from channel_sync import metrics
from channel_sync.errors import ChannelSyncError, MappingError, RateLimitError
from channel_sync.queue.transport import Delivery, MessageQueue
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.consumer")


class FailureAction(str, Enum):
    ACK = "ack"
    RETRY = "retry"
    DEAD_LETTER = "dead_letter"


class QueueConsumer:
    """
    Base class for the outbound dispatcher and the inbound worker.

    Subclasses implement ``handle``. A consumer never processes two deliveries
    concurrently; run several consumers for parallelism.
    """

    def __init__(
        self,
        queue: MessageQueue,
        channel: str,
        max_attempts: int = 3,
        retry_base_delay: float = 2.0,
        poll_timeout: float = 5.0,
    ):
        self.queue = queue
        self.channel = channel
        self.max_attempts = max_attempts
        self.retry_base_delay = retry_base_delay
        self.poll_timeout = poll_timeout
        self._stopping = asyncio.Event()

    async def handle(self, delivery: Delivery) -> None:
        raise NotImplementedError

    def failure_action(self, error: Exception, delivery: Delivery) -> FailureAction:
        if isinstance(error, MappingError):
            return FailureAction.ACK
        # An open circuit fails fast; its messages wait in the dead-letter channel for replay
        if isinstance(error, ChannelSyncError) and not error.retryable:
            return FailureAction.DEAD_LETTER
        if delivery.attempts >= self.max_attempts:
            return FailureAction.DEAD_LETTER
        return FailureAction.RETRY

    def redelivery_delay(self, error: Exception, delivery: Delivery) -> float:
        """Exponential delay, stretched to any wait the error advertises."""
        delay = self.retry_base_delay * (2 ** (delivery.attempts - 1))
        if isinstance(error, RateLimitError):
            delay = max(delay, error.retry_after)
        return delay

    async def process_next(self, timeout: Optional[float] = None) -> bool:
        """Receive and process a single delivery. Returns False if none arrived."""
        delivery = await self.queue.receive(self.channel, self.poll_timeout if timeout is None else timeout)
        if delivery is None:
            return False

        with structlog.contextvars.bound_contextvars(delivery_id=delivery.delivery_id, channel=self.channel):
            try:
                await self.handle(delivery)
            except Exception as e:
                await self._on_failure(delivery, e)
            else:
                await self.queue.ack(delivery)
                metrics.queue_messages_total.labels(channel=self.channel, outcome="processed").inc()
        return True

    async def _on_failure(self, delivery: Delivery, error: Exception) -> None:
        action = self.failure_action(error, delivery)
        error_code = error.code if isinstance(error, ChannelSyncError) else type(error).__name__

        if action == FailureAction.ACK:
            await self.queue.ack(delivery)
            logger.warning("queue_message_skipped", attempts=delivery.attempts, error_code=error_code, error=str(error))
        elif action == FailureAction.RETRY:
            delay = self.redelivery_delay(error, delivery)
            await self.queue.retry(delivery, delay)
            logger.warning(
                "queue_message_retry_scheduled",
                attempts=delivery.attempts,
                max_attempts=self.max_attempts,
                delay_seconds=round(delay, 3),
                error_code=error_code,
                error=str(error),
            )
        else:
            await self.queue.dead_letter(delivery, reason=f"{error_code}: {error}")
            logger.error("queue_message_dead_lettered", attempts=delivery.attempts, error_code=error_code, error=str(error))

        metrics.queue_messages_total.labels(channel=self.channel, outcome=action.value).inc()

    async def run(self) -> None:
        """Consume until stop() is called."""
        logger.info("queue_consumer_started", channel=self.channel, consumer=type(self).__name__)
        while not self._stopping.is_set():
            await self.process_next()
        logger.info("queue_consumer_stopped", channel=self.channel, consumer=type(self).__name__)

    def stop(self) -> None:
        self._stopping.set()
