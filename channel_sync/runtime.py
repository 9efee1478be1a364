"""
Runtime wiring for the channel sync engine
Builds the stores, queue, client registry and workers for one process from SyncSettings
"""

import importlib
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from channel_sync.admin import SyncAdmin
from channel_sync.config import SyncSettings, get_settings
from channel_sync.contracts import PMSStore
from channel_sync.errors import ConfigurationError
from channel_sync.hooks import SyncNotifier
from channel_sync.inbound.runner import InboundSyncRunner, InboundWorker
from channel_sync.outbound.dispatcher import OutboundDispatcher
from channel_sync.queue.transport import MessageQueue, RedisQueue
from channel_sync.registry import ClientRegistry
from channel_sync.scheduler import SyncScheduler
from channel_sync.storage.audit_log import SyncAuditLog
from channel_sync.storage.configurations import SyncConfigurationRepository
from channel_sync.storage.database import Database
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.storage.sync_state import SyncStateTracker
from channel_sync.utils.crypto import CredentialCipher
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.runtime")


def load_store_factory(path: str) -> Callable[..., PMSStore]:
    """Resolve a 'package.module:callable' path to the PMS store factory."""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ConfigurationError(f"Invalid PMS store factory path: {path!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as e:
        raise ConfigurationError(f"Cannot import PMS store module {module_name!r}: {e}")
    factory = getattr(module, attr, None)
    if not callable(factory):
        raise ConfigurationError(f"PMS store factory {path!r} is not callable")
    return factory


class SyncRuntime:
    """
    Owns the process-wide sync components.

    The PMS store is either passed in by the host application or built from
    ``settings.pms_store_factory``; workers that do not touch local entities
    (scheduler, admin triggers) can run without one.
    """

    def __init__(
        self,
        settings: Optional[SyncSettings] = None,
        store: Optional[PMSStore] = None,
        queue: Optional[MessageQueue] = None,
        engine: Optional[AsyncEngine] = None,
    ):
        self.settings = settings or get_settings()
        self.database = Database(self.settings, engine)
        session_factory = self.database.session_factory

        cipher = CredentialCipher(self.settings.encryption_key) if self.settings.encryption_key else None
        self.configurations = SyncConfigurationRepository(session_factory, cipher)
        self.mappings = EntityMappingStore(session_factory)
        self.tracker = SyncStateTracker(session_factory, lock_ttl_seconds=self.settings.run_lock_ttl_seconds)
        self.audit_log = SyncAuditLog(session_factory)
        self.registry = ClientRegistry(self.settings, self.configurations)
        self.queue = queue or RedisQueue.from_url(self.settings.redis_url)
        self._store = store

    @property
    def store(self) -> PMSStore:
        if self._store is None:
            if not self.settings.pms_store_factory:
                raise ConfigurationError("No PMS store configured (CHANNEL_SYNC_PMS_STORE_FACTORY)")
            self._store = load_store_factory(self.settings.pms_store_factory)()
            logger.info("pms_store_loaded", factory=self.settings.pms_store_factory)
        return self._store

    def _consumer_options(self) -> dict:
        return {
            "max_attempts": self.settings.queue_max_attempts,
            "retry_base_delay": self.settings.queue_retry_base_delay_seconds,
            "poll_timeout": self.settings.queue_poll_timeout_seconds,
        }

    def outbound_dispatcher(self) -> OutboundDispatcher:
        return OutboundDispatcher(
            self.queue,
            self.settings.outbound_queue,
            configurations=self.configurations,
            registry=self.registry,
            store=self.store,
            mappings=self.mappings,
            audit_log=self.audit_log,
            **self._consumer_options(),
        )

    def inbound_runner(self) -> InboundSyncRunner:
        return InboundSyncRunner(
            configurations=self.configurations,
            registry=self.registry,
            store=self.store,
            mappings=self.mappings,
            tracker=self.tracker,
            audit_log=self.audit_log,
            page_size=self.settings.inbound_page_size,
        )

    def inbound_worker(self) -> InboundWorker:
        return InboundWorker(self.queue, self.settings.inbound_queue, self.inbound_runner(), **self._consumer_options())

    def scheduler(self) -> SyncScheduler:
        return SyncScheduler(
            self.configurations,
            self.queue,
            self.settings.inbound_queue,
            tick_seconds=self.settings.scheduler_tick_seconds,
        )

    def notifier(self) -> SyncNotifier:
        return SyncNotifier(self.configurations, self.queue, self.settings.outbound_queue, store=self._store)

    def admin(self, with_runner: bool = False) -> SyncAdmin:
        return SyncAdmin(
            configurations=self.configurations,
            registry=self.registry,
            tracker=self.tracker,
            audit_log=self.audit_log,
            queue=self.queue,
            inbound_channel=self.settings.inbound_queue,
            runner=self.inbound_runner() if with_runner else None,
        )

    async def aclose(self) -> None:
        await self.registry.aclose()
        await self.queue.close()
        await self.database.dispose()
