"""
Entity mapping store
Persistent local-id <-> remote-id correlation; one table per entity kind, a bijection per account
"""

from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_sync.contracts import EntityKind, MatchType
from channel_sync.errors import MappingError
from channel_sync.storage.models import MAPPING_MODELS
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import as_utc, utcnow

logger = get_safe_logger("channel_sync.mappings")


@dataclass
class EntityMapping:
    config_id: str
    kind: EntityKind
    local_id: str
    remote_id: str
    match_type: MatchType
    last_synced_at: Optional[datetime]


def _to_mapping(kind: EntityKind, row) -> EntityMapping:
    return EntityMapping(
        config_id=row.config_id,
        kind=kind,
        local_id=row.local_id,
        remote_id=row.remote_id,
        match_type=MatchType(row.match_type),
        last_synced_at=as_utc(row.last_synced_at),
    )


class EntityMappingStore:
    """Lookup and upsert of mappings; enforces the uniqueness invariant and nothing else"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def _find_local(self, session: AsyncSession, config_id: str, kind: EntityKind, local_id: str):
        model = MAPPING_MODELS[kind]
        result = await session.execute(
            select(model).where(model.config_id == config_id, model.local_id == str(local_id))
        )
        return result.scalar_one_or_none()

    async def _find_remote(self, session: AsyncSession, config_id: str, kind: EntityKind, remote_id: str):
        model = MAPPING_MODELS[kind]
        result = await session.execute(
            select(model).where(model.config_id == config_id, model.remote_id == str(remote_id))
        )
        return result.scalar_one_or_none()

    async def get_by_local(self, config_id: str, kind: EntityKind, local_id: str) -> Optional[EntityMapping]:
        async with self.session_factory() as session:
            row = await self._find_local(session, config_id, kind, local_id)
            return _to_mapping(kind, row) if row else None

    async def get_by_remote(self, config_id: str, kind: EntityKind, remote_id: str) -> Optional[EntityMapping]:
        async with self.session_factory() as session:
            row = await self._find_remote(session, config_id, kind, remote_id)
            return _to_mapping(kind, row) if row else None

    async def upsert(
        self,
        config_id: str,
        kind: EntityKind,
        local_id: str,
        remote_id: str,
        match_type: MatchType = MatchType.CREATED,
    ) -> EntityMapping:
        """
        Store the pair (local_id, remote_id) or refresh it if already present.

        Raises MappingError if either side is already paired with a different id.
        """
        local_id, remote_id = str(local_id), str(remote_id)
        now = utcnow()

        async with self.session_factory() as session:
            by_local = await self._find_local(session, config_id, kind, local_id)
            by_remote = await self._find_remote(session, config_id, kind, remote_id)

            if by_local is not None and by_local.remote_id != remote_id:
                raise MappingError(
                    f"Local {kind.value} {local_id} is already mapped to remote {by_local.remote_id}",
                    entity_kind=kind.value,
                    local_id=local_id,
                    remote_id=remote_id,
                )
            if by_remote is not None and by_remote.local_id != local_id:
                raise MappingError(
                    f"Remote {kind.value} {remote_id} is already mapped to local {by_remote.local_id}",
                    entity_kind=kind.value,
                    local_id=local_id,
                    remote_id=remote_id,
                )

            row = by_local
            if row is None:
                row = MAPPING_MODELS[kind](
                    config_id=config_id,
                    local_id=local_id,
                    remote_id=remote_id,
                    match_type=match_type.value,
                    last_synced_at=now,
                )
                session.add(row)
                logger.info(
                    "entity_mapping_created",
                    config_id=config_id,
                    entity_kind=kind.value,
                    local_id=local_id,
                    remote_id=remote_id,
                    match_type=match_type.value,
                )
            else:
                row.last_synced_at = now

            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                raise MappingError(
                    f"Concurrent mapping conflict for {kind.value} {local_id}: {e.orig}",
                    entity_kind=kind.value,
                    local_id=local_id,
                    remote_id=remote_id,
                )
            return _to_mapping(kind, row)

    async def touch(self, config_id: str, kind: EntityKind, local_id: str) -> None:
        """Refresh last_synced_at for an existing mapping."""
        async with self.session_factory() as session:
            row = await self._find_local(session, config_id, kind, local_id)
            if row is None:
                return
            row.last_synced_at = utcnow()
            await session.commit()

    async def list_for_config(self, config_id: str, kind: EntityKind, limit: int = 100, offset: int = 0) -> List[EntityMapping]:
        model = MAPPING_MODELS[kind]
        async with self.session_factory() as session:
            result = await session.execute(
                select(model)
                .where(model.config_id == config_id)
                .order_by(model.created_at)
                .offset(offset)
                .limit(limit)
            )
            return [_to_mapping(kind, row) for row in result.scalars().all()]
