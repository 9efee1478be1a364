"""
Outbound push handlers
One coroutine per message kind; each reads the local snapshot, consults the mapping store and calls the remote API
"""

from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Tuple

from channel_sync.adapters.qloapps import mappers
from channel_sync.adapters.qloapps.api import QloAppsAPI
from channel_sync.contracts import (
    EntityKind,
    LocalGuest,
    MatchType,
    PMSStore,
    SyncOperation,
    is_remote_sourced,
)
from channel_sync.errors import MappingError
from channel_sync.queue.messages import MessageKind
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.outbound")


@dataclass
class OutboundContext:
    """Everything a handler needs for one message"""
    config: SyncConfiguration
    api: QloAppsAPI
    store: PMSStore
    mappings: EntityMappingStore


@dataclass
class PushOutcome:
    entity_kind: EntityKind
    operation: SyncOperation
    local_id: str
    remote_id: Optional[str] = None
    skipped: bool = False
    reason: Optional[str] = None

    @classmethod
    def skip(cls, entity_kind: EntityKind, local_id: str, reason: str) -> "PushOutcome":
        return cls(entity_kind=entity_kind, operation=SyncOperation.SKIP, local_id=local_id, skipped=True, reason=reason)


Handler = Callable[[OutboundContext, object], Awaitable[PushOutcome]]


async def _require_room_type_mapping(ctx: OutboundContext, room_type_id: str) -> str:
    mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.ROOM_TYPE, room_type_id)
    if mapping is None:
        raise MappingError(
            f"Room type {room_type_id} has no remote counterpart; sync room types first",
            entity_kind=EntityKind.ROOM_TYPE.value,
            local_id=room_type_id,
        )
    return mapping.remote_id


async def resolve_remote_customer(ctx: OutboundContext, guest: LocalGuest) -> Tuple[str, Optional[MatchType]]:
    """
    Remote customer id for a local guest, creating the mapping on first use.

    Matches an existing remote customer by email before creating a new one.
    The second element is how a new mapping was made, or None if one existed.
    """
    mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.GUEST, guest.id)
    if mapping is not None:
        return mapping.remote_id, None

    if guest.email:
        existing = await ctx.api.find_customer_by_email(guest.email)
        if existing is not None:
            remote_id = str(existing["id"])
            await ctx.mappings.upsert(ctx.config.id, EntityKind.GUEST, guest.id, remote_id, MatchType.NATURAL_KEY)
            return remote_id, MatchType.NATURAL_KEY

    remote_id = await ctx.api.create_customer(mappers.customer_payload(guest))
    await ctx.mappings.upsert(ctx.config.id, EntityKind.GUEST, guest.id, remote_id, MatchType.CREATED)
    return remote_id, MatchType.CREATED


async def push_reservation(ctx: OutboundContext, message) -> PushOutcome:
    """Create or update the remote booking for a local reservation."""
    reservation = await ctx.store.get_reservation(message.entity_id)
    if reservation is None:
        return PushOutcome.skip(EntityKind.RESERVATION, message.entity_id, "not_found")
    if is_remote_sourced(reservation):
        return PushOutcome.skip(EntityKind.RESERVATION, reservation.id, "remote_sourced")

    remote_room_type_id = await _require_room_type_mapping(ctx, reservation.room_type_id)

    remote_room_id = None
    if reservation.room_id:
        room_mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.ROOM, reservation.room_id)
        remote_room_id = room_mapping.remote_id if room_mapping else None

    guest = await ctx.store.get_guest(reservation.guest_id)
    if guest is None:
        raise MappingError(
            f"Reservation {reservation.id} references missing guest {reservation.guest_id}",
            entity_kind=EntityKind.GUEST.value,
            local_id=reservation.guest_id,
        )
    remote_customer_id, _ = await resolve_remote_customer(ctx, guest)

    payload = mappers.booking_payload(
        reservation,
        remote_customer_id=remote_customer_id,
        remote_room_type_id=remote_room_type_id,
        remote_hotel_id=ctx.config.remote_hotel_id,
        remote_room_id=remote_room_id,
    )

    # The mapping lookup is what makes redelivered create messages safe
    mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.RESERVATION, reservation.id)
    if mapping is not None:
        await ctx.api.update_booking(mapping.remote_id, payload)
        await ctx.mappings.upsert(ctx.config.id, EntityKind.RESERVATION, reservation.id, mapping.remote_id)
        return PushOutcome(EntityKind.RESERVATION, SyncOperation.UPDATE, reservation.id, mapping.remote_id)

    remote_id = await ctx.api.create_booking(payload)
    await ctx.mappings.upsert(ctx.config.id, EntityKind.RESERVATION, reservation.id, remote_id, MatchType.CREATED)
    return PushOutcome(EntityKind.RESERVATION, SyncOperation.CREATE, reservation.id, remote_id)


async def cancel_reservation(ctx: OutboundContext, message) -> PushOutcome:
    """Cancel the remote booking of a mapped reservation."""
    # A reservation deleted locally may still have a remote booking to cancel
    reservation = await ctx.store.get_reservation(message.entity_id)
    if reservation is not None and is_remote_sourced(reservation):
        return PushOutcome.skip(EntityKind.RESERVATION, reservation.id, "remote_sourced")

    mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.RESERVATION, message.entity_id)
    if mapping is None:
        # Never reached the remote system, nothing to cancel
        return PushOutcome.skip(EntityKind.RESERVATION, message.entity_id, "not_mapped")

    await ctx.api.cancel_booking(mapping.remote_id)
    await ctx.mappings.touch(ctx.config.id, EntityKind.RESERVATION, message.entity_id)
    return PushOutcome(EntityKind.RESERVATION, SyncOperation.CANCEL, message.entity_id, mapping.remote_id)


async def push_guest(ctx: OutboundContext, message) -> PushOutcome:
    guest = await ctx.store.get_guest(message.entity_id)
    if guest is None:
        return PushOutcome.skip(EntityKind.GUEST, message.entity_id, "not_found")
    if is_remote_sourced(guest):
        return PushOutcome.skip(EntityKind.GUEST, guest.id, "remote_sourced")

    remote_id, matched = await resolve_remote_customer(ctx, guest)
    if matched == MatchType.CREATED:
        return PushOutcome(EntityKind.GUEST, SyncOperation.CREATE, guest.id, remote_id)

    # Existing or email-matched customer: bring it in line with the local record
    await ctx.api.update_customer(remote_id, mappers.customer_payload(guest))
    await ctx.mappings.touch(ctx.config.id, EntityKind.GUEST, guest.id)
    return PushOutcome(EntityKind.GUEST, SyncOperation.UPDATE, guest.id, remote_id)


async def push_room_type(ctx: OutboundContext, message) -> PushOutcome:
    room_type = await ctx.store.get_room_type(message.entity_id)
    if room_type is None:
        return PushOutcome.skip(EntityKind.ROOM_TYPE, message.entity_id, "not_found")
    if is_remote_sourced(room_type):
        return PushOutcome.skip(EntityKind.ROOM_TYPE, room_type.id, "remote_sourced")

    payload = mappers.room_type_payload(room_type, ctx.config.remote_hotel_id)
    mapping = await ctx.mappings.get_by_local(ctx.config.id, EntityKind.ROOM_TYPE, room_type.id)
    if mapping is not None:
        await ctx.api.update_room_type(mapping.remote_id, payload)
        await ctx.mappings.touch(ctx.config.id, EntityKind.ROOM_TYPE, room_type.id)
        return PushOutcome(EntityKind.ROOM_TYPE, SyncOperation.UPDATE, room_type.id, mapping.remote_id)

    remote_id = await ctx.api.create_room_type(payload)
    await ctx.mappings.upsert(ctx.config.id, EntityKind.ROOM_TYPE, room_type.id, remote_id, MatchType.CREATED)
    return PushOutcome(EntityKind.ROOM_TYPE, SyncOperation.CREATE, room_type.id, remote_id)


async def push_availability(ctx: OutboundContext, message) -> PushOutcome:
    remote_id = await _require_room_type_mapping(ctx, message.entity_id)
    snapshots = await ctx.store.get_availability(message.entity_id, message.date_from, message.date_to)
    if not snapshots:
        return PushOutcome.skip(EntityKind.ROOM_TYPE, message.entity_id, "no_inventory")

    await ctx.api.update_availability(remote_id, mappers.availability_payload(snapshots))
    await ctx.mappings.touch(ctx.config.id, EntityKind.ROOM_TYPE, message.entity_id)
    logger.info(
        "availability_pushed",
        config_id=ctx.config.id,
        room_type_id=message.entity_id,
        days=len(snapshots),
    )
    return PushOutcome(EntityKind.ROOM_TYPE, SyncOperation.UPDATE, message.entity_id, remote_id)


async def push_rates(ctx: OutboundContext, message) -> PushOutcome:
    remote_id = await _require_room_type_mapping(ctx, message.entity_id)
    snapshots = await ctx.store.get_rates(message.entity_id, message.date_from, message.date_to)
    if not snapshots:
        return PushOutcome.skip(EntityKind.ROOM_TYPE, message.entity_id, "no_rates")

    await ctx.api.update_rates(remote_id, mappers.rates_payload(snapshots))
    await ctx.mappings.touch(ctx.config.id, EntityKind.ROOM_TYPE, message.entity_id)
    return PushOutcome(EntityKind.ROOM_TYPE, SyncOperation.UPDATE, message.entity_id, remote_id)


OUTBOUND_HANDLERS: Dict[MessageKind, Handler] = {
    MessageKind.RESERVATION_CREATE: push_reservation,
    MessageKind.RESERVATION_UPDATE: push_reservation,
    MessageKind.RESERVATION_CANCEL: cancel_reservation,
    MessageKind.GUEST_CREATE: push_guest,
    MessageKind.GUEST_UPDATE: push_guest,
    MessageKind.ROOM_TYPE_UPDATE: push_room_type,
    MessageKind.AVAILABILITY_UPDATE: push_availability,
    MessageKind.RATE_UPDATE: push_rates,
}
