"""
Sync audit log
Append-only record of every attempted sync operation, for operators and monitoring
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_sync import metrics
from channel_sync.contracts import EntityKind, SyncDirection, SyncOperation
from channel_sync.storage.models import SyncLogRecord
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import as_utc, utcnow

logger = get_safe_logger("channel_sync.audit_log")


@dataclass
class SyncLogEntry:
    config_id: str
    direction: SyncDirection
    entity_kind: EntityKind
    operation: SyncOperation
    success: bool
    local_id: Optional[str] = None
    remote_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    sync_state_id: Optional[str] = None
    timestamp: Optional[datetime] = None


class SyncAuditLog:
    """
    Write side of the sync_log table.

    ``recent`` exists for administrative inspection only; sync decisions
    never depend on what has been logged.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def record(self, entry: SyncLogEntry) -> None:
        row = SyncLogRecord(
            config_id=entry.config_id,
            sync_state_id=entry.sync_state_id,
            direction=entry.direction.value,
            entity_kind=entry.entity_kind.value,
            local_id=str(entry.local_id) if entry.local_id is not None else None,
            remote_id=str(entry.remote_id) if entry.remote_id is not None else None,
            operation=entry.operation.value,
            success=entry.success,
            error_message=entry.error_message,
            error_code=entry.error_code,
            timestamp=entry.timestamp or utcnow(),
        )
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()

        metrics.sync_operations_total.labels(
            direction=entry.direction.value,
            entity_kind=entry.entity_kind.value,
            operation=entry.operation.value,
            status="success" if entry.success else "failure",
        ).inc()

    async def recent(
        self,
        config_id: str,
        limit: int = 50,
        success: Optional[bool] = None,
        entity_kind: Optional[EntityKind] = None,
    ) -> List[SyncLogEntry]:
        query = select(SyncLogRecord).where(SyncLogRecord.config_id == config_id)
        if success is not None:
            query = query.where(SyncLogRecord.success.is_(success))
        if entity_kind is not None:
            query = query.where(SyncLogRecord.entity_kind == entity_kind.value)
        query = query.order_by(SyncLogRecord.timestamp.desc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return [
                SyncLogEntry(
                    config_id=row.config_id,
                    direction=SyncDirection(row.direction),
                    entity_kind=EntityKind(row.entity_kind),
                    operation=SyncOperation(row.operation),
                    success=row.success,
                    local_id=row.local_id,
                    remote_id=row.remote_id,
                    error_message=row.error_message,
                    error_code=row.error_code,
                    sync_state_id=row.sync_state_id,
                    timestamp=as_utc(row.timestamp),
                )
                for row in result.scalars().all()
            ]
