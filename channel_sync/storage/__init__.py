"""
Persistence for sync configuration, entity mappings, sync runs and the audit log
"""

from .models import (
    Base,
    SyncConfiguration,
    ReservationMapping,
    GuestMapping,
    RoomTypeMapping,
    RoomMapping,
    SyncStateRecord,
    SyncLogRecord,
)
from .database import Database, create_engine, create_session_factory, create_tables
from .configurations import SyncConfigurationRepository, inbound_enabled, outbound_enabled
from .mappings import EntityMapping, EntityMappingStore
from .sync_state import SyncRun, SyncStateTracker
from .audit_log import SyncAuditLog, SyncLogEntry

__all__ = [
    "Base",
    "SyncConfiguration",
    "ReservationMapping",
    "GuestMapping",
    "RoomTypeMapping",
    "RoomMapping",
    "SyncStateRecord",
    "SyncLogRecord",
    "Database",
    "create_engine",
    "create_session_factory",
    "create_tables",
    "SyncConfigurationRepository",
    "inbound_enabled",
    "outbound_enabled",
    "EntityMapping",
    "EntityMappingStore",
    "SyncRun",
    "SyncStateTracker",
    "SyncAuditLog",
    "SyncLogEntry",
]
