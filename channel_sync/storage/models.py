"""
SQLAlchemy models for channel sync state
Configuration, entity mappings (one table per kind), sync runs and the audit log
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    Boolean, Column, DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, declared_attr

from channel_sync.contracts import EntityKind

Base = declarative_base()


def _uuid() -> str:
    return str(uuid4())


def _now() -> datetime:
    return datetime.now(timezone.utc)


class SyncConfiguration(Base):
    """One remote channel-manager account linked to a local hotel"""

    __tablename__ = "sync_configuration"

    id = Column(String(36), primary_key=True, default=_uuid)
    hotel_id = Column(String(64), nullable=False, index=True)

    # Remote account
    base_url = Column(String(500), nullable=False)
    api_key_encrypted = Column(Text, nullable=False)
    remote_hotel_id = Column(String(64), nullable=False)

    # Toggles
    sync_enabled = Column(Boolean, default=False, nullable=False)
    sync_reservations_inbound = Column(Boolean, default=True, nullable=False)
    sync_reservations_outbound = Column(Boolean, default=True, nullable=False)
    sync_guests_inbound = Column(Boolean, default=True, nullable=False)
    sync_guests_outbound = Column(Boolean, default=True, nullable=False)
    sync_room_types_inbound = Column(Boolean, default=True, nullable=False)
    sync_room_types_outbound = Column(Boolean, default=True, nullable=False)
    sync_rooms_inbound = Column(Boolean, default=True, nullable=False)
    sync_availability = Column(Boolean, default=True, nullable=False)
    sync_rates = Column(Boolean, default=True, nullable=False)
    sync_interval_minutes = Column(Integer, default=15, nullable=False)

    # Written by the sync engine only
    last_successful_sync = Column(DateTime(timezone=True))
    last_sync_error = Column(Text)
    consecutive_failures = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    __table_args__ = (
        UniqueConstraint("hotel_id", "remote_hotel_id", name="uq_sync_configuration_hotel_remote"),
    )

    def __repr__(self):
        return f"<SyncConfiguration(id={self.id}, hotel_id={self.hotel_id}, enabled={self.sync_enabled})>"


class EntityMappingMixin:
    """Columns shared by every entity_mapping_* table"""

    id = Column(String(36), primary_key=True, default=_uuid)
    local_id = Column(String(64), nullable=False)
    remote_id = Column(String(64), nullable=False)
    match_type = Column(String(20), nullable=False, default="created")
    last_synced_at = Column(DateTime(timezone=True), default=_now)
    created_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_now, onupdate=_now, nullable=False)

    @declared_attr
    def config_id(cls):
        return Column(String(36), ForeignKey("sync_configuration.id", ondelete="CASCADE"), nullable=False)

    @declared_attr
    def __table_args__(cls):
        return (
            UniqueConstraint("config_id", "local_id", name=f"uq_{cls.__tablename__}_local"),
            UniqueConstraint("config_id", "remote_id", name=f"uq_{cls.__tablename__}_remote"),
        )

    def __repr__(self):
        return f"<{type(self).__name__}(local_id={self.local_id}, remote_id={self.remote_id})>"


class ReservationMapping(EntityMappingMixin, Base):
    __tablename__ = "entity_mapping_reservation"


class GuestMapping(EntityMappingMixin, Base):
    __tablename__ = "entity_mapping_guest"


class RoomTypeMapping(EntityMappingMixin, Base):
    __tablename__ = "entity_mapping_room_type"


class RoomMapping(EntityMappingMixin, Base):
    __tablename__ = "entity_mapping_room"


MAPPING_MODELS = {
    EntityKind.RESERVATION: ReservationMapping,
    EntityKind.GUEST: GuestMapping,
    EntityKind.ROOM_TYPE: RoomTypeMapping,
    EntityKind.ROOM: RoomMapping,
}


class SyncStateRecord(Base):
    """One row per inbound sync run"""

    __tablename__ = "sync_state"

    id = Column(String(36), primary_key=True, default=_uuid)
    config_id = Column(String(36), ForeignKey("sync_configuration.id", ondelete="CASCADE"), nullable=False)
    mode = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False)
    trigger_source = Column(String(20), nullable=False, default="manual")

    started_at = Column(DateTime(timezone=True), default=_now, nullable=False)
    completed_at = Column(DateTime(timezone=True))
    duration_ms = Column(Integer)

    # Newest remote modification timestamp processed by this run
    cursor = Column(DateTime(timezone=True))

    processed = Column(Integer, default=0, nullable=False)
    created = Column(Integer, default=0, nullable=False)
    updated = Column(Integer, default=0, nullable=False)
    failed = Column(Integer, default=0, nullable=False)

    error_message = Column(Text)

    __table_args__ = (
        Index("ix_sync_state_config_started", "config_id", "started_at"),
        Index("ix_sync_state_config_status", "config_id", "status"),
    )


class SyncLogRecord(Base):
    """Append-only audit entry, one per attempted operation"""

    __tablename__ = "sync_log"

    id = Column(String(36), primary_key=True, default=_uuid)
    config_id = Column(String(36), ForeignKey("sync_configuration.id", ondelete="CASCADE"), nullable=False)
    sync_state_id = Column(String(36), ForeignKey("sync_state.id", ondelete="SET NULL"))
    direction = Column(String(10), nullable=False)
    entity_kind = Column(String(20), nullable=False)
    local_id = Column(String(64))
    remote_id = Column(String(64))
    operation = Column(String(10), nullable=False)
    success = Column(Boolean, nullable=False)
    error_message = Column(Text)
    error_code = Column(String(50))
    timestamp = Column(DateTime(timezone=True), default=_now, nullable=False)

    __table_args__ = (
        Index("ix_sync_log_config_timestamp", "config_id", "timestamp"),
        Index("ix_sync_log_entity", "entity_kind", "local_id"),
    )
