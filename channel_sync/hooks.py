"""
Mutation hooks
Called by the PMS CRUD layer after a successful commit to enqueue outbound sync messages
"""

from datetime import date
from enum import Enum
from typing import Any, List, Optional

from channel_sync.contracts import EntitySource, PMSStore
from channel_sync.queue.messages import MessageKind, build_outbound_message
from channel_sync.queue.transport import MessageQueue
from channel_sync.storage.configurations import SyncConfigurationRepository, outbound_enabled
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.hooks")


class ChangeSubject(str, Enum):
    RESERVATION = "reservation"
    GUEST = "guest"
    ROOM_TYPE = "room_type"
    AVAILABILITY = "availability"
    RATE = "rate"


class ChangeEvent(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    CANCELLED = "cancelled"


MESSAGE_KINDS = {
    (ChangeSubject.RESERVATION, ChangeEvent.CREATED): MessageKind.RESERVATION_CREATE,
    (ChangeSubject.RESERVATION, ChangeEvent.UPDATED): MessageKind.RESERVATION_UPDATE,
    (ChangeSubject.RESERVATION, ChangeEvent.CANCELLED): MessageKind.RESERVATION_CANCEL,
    (ChangeSubject.GUEST, ChangeEvent.CREATED): MessageKind.GUEST_CREATE,
    (ChangeSubject.GUEST, ChangeEvent.UPDATED): MessageKind.GUEST_UPDATE,
    (ChangeSubject.ROOM_TYPE, ChangeEvent.CREATED): MessageKind.ROOM_TYPE_UPDATE,
    (ChangeSubject.ROOM_TYPE, ChangeEvent.UPDATED): MessageKind.ROOM_TYPE_UPDATE,
    (ChangeSubject.AVAILABILITY, ChangeEvent.UPDATED): MessageKind.AVAILABILITY_UPDATE,
    (ChangeSubject.RATE, ChangeEvent.UPDATED): MessageKind.RATE_UPDATE,
}

INVENTORY_SUBJECTS = (ChangeSubject.AVAILABILITY, ChangeSubject.RATE)


class SyncNotifier:
    """
    Entry point for the CRUD layer.

    ``notify_entity_changed`` never raises: a failure to enqueue is logged
    and the local operation that triggered it stands. Messages only go to
    the configurations of the hotel that owns the entity.
    """

    def __init__(
        self,
        configurations: SyncConfigurationRepository,
        queue: MessageQueue,
        channel: str,
        store: Optional[PMSStore] = None,
    ):
        self.configurations = configurations
        self.queue = queue
        self.channel = channel
        self.store = store

    async def _load_entity(self, subject: ChangeSubject, local_id: str) -> Optional[Any]:
        """Local snapshot of the changed entity; inventory and rates resolve to their room type."""
        if self.store is None:
            return None
        if subject == ChangeSubject.RESERVATION:
            return await self.store.get_reservation(local_id)
        if subject == ChangeSubject.GUEST:
            return await self.store.get_guest(local_id)
        return await self.store.get_room_type(local_id)

    async def _target_configurations(self, hotel_id: str) -> List[SyncConfiguration]:
        return [c for c in await self.configurations.get_for_hotel(hotel_id) if c.sync_enabled]

    async def notify_entity_changed(
        self,
        subject: ChangeSubject,
        local_id: str,
        event: ChangeEvent = ChangeEvent.UPDATED,
        *,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        source: Optional[EntitySource] = None,
        hotel_id: Optional[str] = None,
    ) -> int:
        """Enqueue one message per enabled configuration of the owning hotel. Returns how many were enqueued."""
        try:
            subject, event = ChangeSubject(subject), ChangeEvent(event)
            kind = MESSAGE_KINDS.get((subject, event))
            if kind is None:
                logger.warning("sync_hook_unsupported_event", subject=subject.value, event_kind=event.value)
                return 0

            entity = await self._load_entity(subject, local_id)
            # Inventory and rates are always owned locally
            if source is None and subject not in INVENTORY_SUBJECTS:
                source = getattr(entity, "source", None)
            if source == EntitySource.CHANNEL:
                # Changes that came from the remote system are not echoed back
                logger.debug("sync_hook_remote_sourced", subject=subject.value, local_id=local_id)
                return 0

            hotel_id = hotel_id or getattr(entity, "hotel_id", None)
            if hotel_id is None:
                logger.warning("sync_hook_hotel_unknown", subject=subject.value, local_id=local_id)
                return 0

            fields = {"entity_id": str(local_id)}
            if kind in (MessageKind.AVAILABILITY_UPDATE, MessageKind.RATE_UPDATE):
                fields.update(date_from=date_from, date_to=date_to)

            enqueued = 0
            for config in await self._target_configurations(hotel_id):
                if not outbound_enabled(config, kind):
                    continue
                message = build_outbound_message(kind, config_id=config.id, **fields)
                await self.queue.publish(self.channel, message.model_dump_json())
                enqueued += 1

            logger.info(
                "sync_hook_enqueued",
                kind=kind.value,
                local_id=local_id,
                hotel_id=hotel_id,
                messages=enqueued,
            )
            return enqueued
        except Exception as e:
            logger.error(
                "sync_hook_failed",
                subject=str(getattr(subject, "value", subject)),
                local_id=local_id,
                error_type=type(e).__name__,
                error=str(e),
            )
            return 0
