"""
Inbound pull handlers
Apply one normalized remote record to the local PMS and keep its mapping current
"""

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from channel_sync.adapters.qloapps import mappers
from channel_sync.adapters.qloapps.api import QloAppsAPI
from channel_sync.contracts import EntityKind, MatchType, PMSStore, RemoteRecord, SyncOperation
from channel_sync.errors import MappingError, ValidationError
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.inbound")


@dataclass
class InboundContext:
    config: SyncConfiguration
    api: QloAppsAPI
    store: PMSStore
    mappings: EntityMappingStore


@dataclass
class PullOutcome:
    entity_kind: EntityKind
    operation: SyncOperation
    local_id: str
    remote_id: str


@dataclass(frozen=True)
class _EntityAccess:
    """PMSStore entry points for one entity kind"""
    get: Callable[[str], Awaitable[Any]]
    find_by_natural_key: Callable[[str], Awaitable[Any]]
    create: Callable[[Dict[str, Any]], Awaitable[Any]]
    update: Callable[[str, Dict[str, Any]], Awaitable[Any]]


def _access(store: PMSStore, kind: EntityKind) -> _EntityAccess:
    if kind == EntityKind.ROOM_TYPE:
        return _EntityAccess(store.get_room_type, store.find_room_type_by_name, store.create_room_type, store.update_room_type)
    if kind == EntityKind.ROOM:
        return _EntityAccess(store.get_room, store.find_room_by_number, store.create_room, store.update_room)
    if kind == EntityKind.GUEST:
        return _EntityAccess(store.get_guest, store.find_guest_by_email, store.create_guest, store.update_guest)
    return _EntityAccess(
        store.get_reservation, store.find_reservation_by_reference, store.create_reservation, store.update_reservation,
    )


async def _resolve_reference(ctx: InboundContext, kind: EntityKind, remote_id: str, owner: RemoteRecord) -> str:
    mapping = await ctx.mappings.get_by_remote(ctx.config.id, kind, remote_id)
    if mapping is None:
        raise MappingError(
            f"Remote {kind.value} {remote_id} referenced by record {owner.remote_id} has not been synced",
            entity_kind=kind.value,
            remote_id=remote_id,
        )
    return mapping.local_id


async def apply_remote_record(
    ctx: InboundContext,
    kind: EntityKind,
    record: RemoteRecord,
    fields: Optional[Dict[str, Any]] = None,
) -> PullOutcome:
    """
    Upsert a remote record into the local store.

    Resolution order: existing mapping by remote id, then a local record with
    the same natural key, then a new local record. Records matched by natural
    key keep their local origin; only records created here are marked as
    channel-sourced.
    """
    access = _access(ctx.store, kind)
    fields = dict(record.fields if fields is None else fields)

    mapping = await ctx.mappings.get_by_remote(ctx.config.id, kind, record.remote_id)
    local = await access.get(mapping.local_id) if mapping else None
    if mapping is not None and local is None:
        raise MappingError(
            f"Remote {kind.value} {record.remote_id} is mapped to missing local record {mapping.local_id}",
            entity_kind=kind.value,
            local_id=mapping.local_id,
            remote_id=record.remote_id,
        )

    match_type = None
    if local is None and record.natural_key:
        local = await access.find_by_natural_key(record.natural_key)
        if local is not None:
            match_type = MatchType.NATURAL_KEY

    if local is None:
        fields.setdefault("hotel_id", ctx.config.hotel_id)
        created = await access.create(fields)
        await ctx.mappings.upsert(ctx.config.id, kind, created.id, record.remote_id, MatchType.CREATED)
        return PullOutcome(kind, SyncOperation.CREATE, created.id, record.remote_id)

    # Link before writing so a conflicting mapping leaves the local record untouched
    if match_type is not None:
        await ctx.mappings.upsert(ctx.config.id, kind, local.id, record.remote_id, match_type)
        logger.info(
            "inbound_record_linked",
            config_id=ctx.config.id,
            entity_kind=kind.value,
            local_id=local.id,
            remote_id=record.remote_id,
        )

    update_fields = {name: value for name, value in fields.items() if name != "source"}
    await access.update(local.id, update_fields)
    if match_type is None:
        await ctx.mappings.touch(ctx.config.id, kind, local.id)
    return PullOutcome(kind, SyncOperation.UPDATE, local.id, record.remote_id)


async def pull_room_type(ctx: InboundContext, data: Dict[str, Any]) -> PullOutcome:
    return await apply_remote_record(ctx, EntityKind.ROOM_TYPE, mappers.room_type_from_remote(data))


async def pull_room(ctx: InboundContext, data: Dict[str, Any]) -> PullOutcome:
    record = mappers.room_from_remote(data)
    fields = dict(record.fields)
    fields["room_type_id"] = None
    room_type_ref = record.references.get(EntityKind.ROOM_TYPE)
    if room_type_ref:
        fields["room_type_id"] = await _resolve_reference(ctx, EntityKind.ROOM_TYPE, room_type_ref, record)
    return await apply_remote_record(ctx, EntityKind.ROOM, record, fields)


async def pull_customer(ctx: InboundContext, data: Dict[str, Any]) -> PullOutcome:
    return await apply_remote_record(ctx, EntityKind.GUEST, mappers.customer_from_remote(data))


async def pull_booking(ctx: InboundContext, data: Dict[str, Any]) -> PullOutcome:
    record = mappers.booking_from_remote(data)
    fields = dict(record.fields)
    fields["guest_id"] = await _resolve_reference(ctx, EntityKind.GUEST, record.references[EntityKind.GUEST], record)
    fields["room_type_id"] = await _resolve_reference(
        ctx, EntityKind.ROOM_TYPE, record.references[EntityKind.ROOM_TYPE], record,
    )

    # An unsynced physical room is not fatal; the booking stays unassigned
    room_ref = record.references.get(EntityKind.ROOM)
    if room_ref:
        room_mapping = await ctx.mappings.get_by_remote(ctx.config.id, EntityKind.ROOM, room_ref)
        fields["room_id"] = room_mapping.local_id if room_mapping else None
    return await apply_remote_record(ctx, EntityKind.RESERVATION, record, fields)


PullHandler = Callable[[InboundContext, Dict[str, Any]], Awaitable[PullOutcome]]
Lister = Callable[..., Awaitable[List[Dict[str, Any]]]]


@dataclass(frozen=True)
class InboundStage:
    """One entity kind of an inbound run: how to list remote records and apply each"""
    kind: EntityKind
    lister: str
    handler: PullHandler

    def list_page(self, api: QloAppsAPI) -> Lister:
        return getattr(api, self.lister)


# Dependency order: rooms and bookings resolve room types; bookings resolve customers
INBOUND_STAGES: Tuple[InboundStage, ...] = (
    InboundStage(EntityKind.ROOM_TYPE, "list_room_types", pull_room_type),
    InboundStage(EntityKind.ROOM, "list_rooms", pull_room),
    InboundStage(EntityKind.GUEST, "list_customers", pull_customer),
    InboundStage(EntityKind.RESERVATION, "list_bookings", pull_booking),
)


def record_modified_at(data: Any):
    """Remote modification time of a raw record, or None if absent or unparseable."""
    if not isinstance(data, dict):
        return None
    try:
        return mappers.parse_remote_datetime(data.get("date_upd"))
    except ValidationError:
        return None
