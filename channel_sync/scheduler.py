"""
Inbound sync scheduler
Periodically enqueues incremental pull triggers for configurations whose interval has elapsed
"""

import asyncio
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from channel_sync.contracts import SyncMode, TriggerSource
from channel_sync.queue.messages import InboundTrigger
from channel_sync.queue.transport import MessageQueue
from channel_sync.storage.configurations import SyncConfigurationRepository
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import as_utc, utcnow

logger = get_safe_logger("channel_sync.scheduler")


class SyncScheduler:
    """
    Enqueues incremental inbound triggers.

    A configuration is due when ``sync_interval_minutes`` has passed since its
    last successful sync (or it never synced) and this scheduler has not
    already enqueued a trigger for it within the same interval.
    """

    def __init__(
        self,
        configurations: SyncConfigurationRepository,
        queue: MessageQueue,
        channel: str,
        tick_seconds: float = 60.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.configurations = configurations
        self.queue = queue
        self.channel = channel
        self.tick_seconds = tick_seconds
        self._clock = clock
        self._last_enqueued: Dict[str, datetime] = {}
        self._stopping = asyncio.Event()

    def is_due(self, config: SyncConfiguration, now: datetime) -> bool:
        interval = timedelta(minutes=config.sync_interval_minutes or 15)

        enqueued_at = self._last_enqueued.get(config.id)
        if enqueued_at is not None and now - enqueued_at < interval:
            return False

        last_sync = as_utc(config.last_successful_sync)
        return last_sync is None or now - last_sync >= interval

    async def tick(self, now: Optional[datetime] = None) -> List[str]:
        """Enqueue triggers for every due configuration; returns their ids."""
        now = now or self._clock()
        enqueued = []
        for config in await self.configurations.list_enabled():
            if not self.is_due(config, now):
                continue
            trigger = InboundTrigger(
                config_id=config.id,
                mode=SyncMode.INCREMENTAL,
                trigger_source=TriggerSource.SCHEDULED,
            )
            await self.queue.publish(self.channel, trigger.model_dump_json())
            self._last_enqueued[config.id] = now
            enqueued.append(config.id)

        if enqueued:
            logger.info("scheduled_syncs_enqueued", count=len(enqueued), config_ids=enqueued)
        return enqueued

    async def run(self) -> None:
        logger.info("sync_scheduler_started", tick_seconds=self.tick_seconds)
        while not self._stopping.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.error("sync_scheduler_tick_failed", error_type=type(e).__name__, error=str(e))
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.tick_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("sync_scheduler_stopped")

    def stop(self) -> None:
        self._stopping.set()
