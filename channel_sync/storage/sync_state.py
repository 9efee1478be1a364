"""
Sync state tracker
Persistent progress, cursor and outcome of every inbound sync run
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_sync.contracts import SyncCounts, SyncMode, SyncStatus, TriggerSource
from channel_sync.errors import ChannelSyncError, SyncInProgressError
from channel_sync.storage.models import SyncStateRecord
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import as_utc, utcnow

logger = get_safe_logger("channel_sync.sync_state")


@dataclass
class SyncRun:
    id: str
    config_id: str
    mode: SyncMode
    status: SyncStatus
    trigger_source: TriggerSource
    started_at: datetime
    completed_at: Optional[datetime] = None
    cursor: Optional[datetime] = None
    counts: SyncCounts = field(default_factory=SyncCounts)
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None


def _to_run(row: SyncStateRecord) -> SyncRun:
    return SyncRun(
        id=row.id,
        config_id=row.config_id,
        mode=SyncMode(row.mode),
        status=SyncStatus(row.status),
        trigger_source=TriggerSource(row.trigger_source),
        started_at=as_utc(row.started_at),
        completed_at=as_utc(row.completed_at),
        cursor=as_utc(row.cursor),
        counts=SyncCounts(
            processed=row.processed,
            created=row.created,
            updated=row.updated,
            failed=row.failed,
        ),
        error_message=row.error_message,
        duration_ms=row.duration_ms,
    )


class SyncStateTracker:
    """
    Creates and finalizes sync_state rows.

    A running row younger than ``lock_ttl_seconds`` acts as the per-configuration
    run lock; older running rows are treated as abandoned and marked failed.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        lock_ttl_seconds: int = 1800,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.session_factory = session_factory
        self.lock_ttl = timedelta(seconds=lock_ttl_seconds)
        self._clock = clock

    async def start_run(
        self,
        config_id: str,
        mode: SyncMode,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
    ) -> SyncRun:
        now = self._clock()
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStateRecord).where(
                    SyncStateRecord.config_id == config_id,
                    SyncStateRecord.status == SyncStatus.RUNNING.value,
                )
            )
            for running in result.scalars().all():
                started_at = as_utc(running.started_at)
                if started_at + self.lock_ttl > now:
                    raise SyncInProgressError(config_id, running_since=started_at)

                running.status = SyncStatus.FAILED.value
                running.completed_at = now
                running.error_message = "Run abandoned: lock expired before completion"
                logger.warning("sync_run_lock_expired", config_id=config_id, run_id=running.id)

            row = SyncStateRecord(
                config_id=config_id,
                mode=mode.value,
                status=SyncStatus.RUNNING.value,
                trigger_source=trigger_source.value,
                started_at=now,
            )
            session.add(row)
            await session.commit()

        logger.info("sync_run_started", config_id=config_id, run_id=row.id, mode=mode.value, trigger=trigger_source.value)
        return _to_run(row)

    async def _load(self, session: AsyncSession, run_id: str) -> SyncStateRecord:
        row = await session.get(SyncStateRecord, run_id)
        if row is None:
            raise ChannelSyncError(f"Sync run {run_id} not found")
        return row

    async def increment(self, run_id: str, counts: SyncCounts) -> None:
        """Add a batch of counts to the run's running totals."""
        async with self.session_factory() as session:
            row = await self._load(session, run_id)
            row.processed += counts.processed
            row.created += counts.created
            row.updated += counts.updated
            row.failed += counts.failed
            await session.commit()

    async def complete(self, run_id: str, cursor: Optional[datetime]) -> SyncRun:
        now = self._clock()
        async with self.session_factory() as session:
            row = await self._load(session, run_id)
            row.status = SyncStatus.COMPLETED.value
            row.completed_at = now
            row.duration_ms = int((now - as_utc(row.started_at)).total_seconds() * 1000)
            if cursor is not None:
                row.cursor = cursor
            await session.commit()
            run = _to_run(row)

        logger.info(
            "sync_run_completed",
            run_id=run_id,
            config_id=run.config_id,
            processed=run.counts.processed,
            failed=run.counts.failed,
            cursor=run.cursor.isoformat() if run.cursor else None,
        )
        return run

    async def fail(self, run_id: str, error_message: str) -> SyncRun:
        now = self._clock()
        async with self.session_factory() as session:
            row = await self._load(session, run_id)
            row.status = SyncStatus.FAILED.value
            row.completed_at = now
            row.duration_ms = int((now - as_utc(row.started_at)).total_seconds() * 1000)
            row.error_message = error_message
            await session.commit()
            run = _to_run(row)

        logger.error("sync_run_failed", run_id=run_id, config_id=run.config_id, error=error_message)
        return run

    async def get(self, run_id: str) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            row = await session.get(SyncStateRecord, run_id)
            return _to_run(row) if row else None

    async def latest(self, config_id: str) -> Optional[SyncRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStateRecord)
                .where(SyncStateRecord.config_id == config_id)
                .order_by(SyncStateRecord.started_at.desc())
                .limit(1)
            )
            row = result.scalar_one_or_none()
            return _to_run(row) if row else None

    async def latest_cursor(self, config_id: str) -> Optional[datetime]:
        """Cursor of the most recent completed run that recorded one."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStateRecord.cursor)
                .where(
                    SyncStateRecord.config_id == config_id,
                    SyncStateRecord.status == SyncStatus.COMPLETED.value,
                    SyncStateRecord.cursor.is_not(None),
                )
                .order_by(SyncStateRecord.completed_at.desc())
                .limit(1)
            )
            return as_utc(result.scalar_one_or_none())

    async def history(self, config_id: str, limit: int = 20) -> List[SyncRun]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncStateRecord)
                .where(SyncStateRecord.config_id == config_id)
                .order_by(SyncStateRecord.started_at.desc())
                .limit(limit)
            )
            return [_to_run(row) for row in result.scalars().all()]
