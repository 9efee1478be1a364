"""
Repository for sync_configuration rows
The engine reads configurations and writes only the last_* bookkeeping fields
"""

from datetime import datetime
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from channel_sync.contracts import EntityKind
from channel_sync.errors import ConfigurationError
from channel_sync.queue.messages import MessageKind
from channel_sync.storage.models import SyncConfiguration
from channel_sync.utils.crypto import CredentialCipher
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import utcnow

logger = get_safe_logger("channel_sync.configurations")

OUTBOUND_TOGGLES = {
    MessageKind.RESERVATION_CREATE: "sync_reservations_outbound",
    MessageKind.RESERVATION_UPDATE: "sync_reservations_outbound",
    MessageKind.RESERVATION_CANCEL: "sync_reservations_outbound",
    MessageKind.GUEST_CREATE: "sync_guests_outbound",
    MessageKind.GUEST_UPDATE: "sync_guests_outbound",
    MessageKind.ROOM_TYPE_UPDATE: "sync_room_types_outbound",
    MessageKind.AVAILABILITY_UPDATE: "sync_availability",
    MessageKind.RATE_UPDATE: "sync_rates",
}

INBOUND_TOGGLES = {
    EntityKind.ROOM_TYPE: "sync_room_types_inbound",
    EntityKind.ROOM: "sync_rooms_inbound",
    EntityKind.GUEST: "sync_guests_inbound",
    EntityKind.RESERVATION: "sync_reservations_inbound",
}


def outbound_enabled(config: SyncConfiguration, kind: MessageKind) -> bool:
    return bool(config.sync_enabled and getattr(config, OUTBOUND_TOGGLES[kind]))


def inbound_enabled(config: SyncConfiguration, kind: EntityKind) -> bool:
    return bool(config.sync_enabled and getattr(config, INBOUND_TOGGLES[kind]))


def validate_configuration(config: SyncConfiguration) -> None:
    """Raise ConfigurationError when the account cannot be used for remote calls."""
    missing = [
        name for name in ("base_url", "api_key_encrypted", "remote_hotel_id")
        if not getattr(config, name)
    ]
    if missing:
        raise ConfigurationError(
            f"Sync configuration {config.id} is incomplete: missing {', '.join(missing)}",
            details={"missing": missing},
        )


class SyncConfigurationRepository:
    """Repository for sync configuration database operations"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], cipher: Optional[CredentialCipher] = None):
        self.session_factory = session_factory
        self.cipher = cipher

    def _require_cipher(self) -> CredentialCipher:
        if self.cipher is None:
            raise ConfigurationError("Credential cipher is not configured")
        return self.cipher

    def decrypt_api_key(self, config: SyncConfiguration) -> str:
        return self._require_cipher().decrypt(config.api_key_encrypted)

    async def get(self, config_id: str) -> SyncConfiguration:
        async with self.session_factory() as session:
            config = await session.get(SyncConfiguration, config_id)
        if config is None:
            raise ConfigurationError(f"Sync configuration {config_id} not found", details={"reason": "not_found"})
        return config

    async def get_for_hotel(self, hotel_id: str) -> List[SyncConfiguration]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncConfiguration).where(SyncConfiguration.hotel_id == hotel_id)
            )
            return list(result.scalars().all())

    async def list_enabled(self) -> List[SyncConfiguration]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(SyncConfiguration).where(SyncConfiguration.sync_enabled.is_(True))
            )
            return list(result.scalars().all())

    async def create(
        self,
        hotel_id: str,
        base_url: str,
        api_key: str,
        remote_hotel_id: str,
        **options,
    ) -> SyncConfiguration:
        """Create a configuration, encrypting the API key (administrative setup)."""
        config = SyncConfiguration(
            hotel_id=hotel_id,
            base_url=base_url.rstrip("/"),
            api_key_encrypted=self._require_cipher().encrypt(api_key),
            remote_hotel_id=str(remote_hotel_id),
            **options,
        )
        async with self.session_factory() as session:
            session.add(config)
            await session.commit()
            await session.refresh(config)

        logger.info("sync_configuration_created", config_id=config.id, hotel_id=hotel_id)
        return config

    async def mark_success(self, config_id: str, at: Optional[datetime] = None) -> None:
        async with self.session_factory() as session:
            config = await session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigurationError(f"Sync configuration {config_id} not found")
            config.last_successful_sync = at or utcnow()
            config.last_sync_error = None
            config.consecutive_failures = 0
            await session.commit()

    async def mark_failure(self, config_id: str, message: str) -> None:
        async with self.session_factory() as session:
            config = await session.get(SyncConfiguration, config_id)
            if config is None:
                raise ConfigurationError(f"Sync configuration {config_id} not found")
            config.last_sync_error = message
            config.consecutive_failures = (config.consecutive_failures or 0) + 1
            await session.commit()

        logger.warning("sync_configuration_failure_recorded", config_id=config_id, error=message)
