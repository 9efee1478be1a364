"""
Administrative sync operations
Manual triggers and read-only inspection used by the CLI and the admin router
"""

from typing import Any, Callable, Dict, List, Optional, Union

from channel_sync.adapters.qloapps.api import QloAppsAPI
from channel_sync.client import ConnectionTestResult
from channel_sync.contracts import EntityKind, SyncMode, TriggerSource
from channel_sync.errors import ConfigurationError
from channel_sync.inbound.runner import InboundSyncRunner
from channel_sync.queue.messages import InboundTrigger
from channel_sync.queue.transport import MessageQueue
from channel_sync.registry import ClientRegistry
from channel_sync.storage.audit_log import SyncAuditLog, SyncLogEntry
from channel_sync.storage.configurations import SyncConfigurationRepository
from channel_sync.storage.sync_state import SyncRun, SyncStateTracker
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.admin")


class SyncAdmin:
    """Facade over the sync components for operators"""

    def __init__(
        self,
        configurations: SyncConfigurationRepository,
        registry: ClientRegistry,
        tracker: SyncStateTracker,
        audit_log: SyncAuditLog,
        queue: MessageQueue,
        inbound_channel: str,
        runner: Optional[InboundSyncRunner] = None,
        api_factory: Callable[..., QloAppsAPI] = QloAppsAPI,
    ):
        self.configurations = configurations
        self.registry = registry
        self.tracker = tracker
        self.audit_log = audit_log
        self.queue = queue
        self.inbound_channel = inbound_channel
        self.runner = runner
        self.api_factory = api_factory

    async def _trigger(self, config_id: str, mode: SyncMode, inline: bool) -> Union[SyncRun, InboundTrigger]:
        # Fail fast on unknown ids instead of dead-lettering a trigger later
        await self.configurations.get(config_id)

        if inline:
            if self.runner is None:
                raise ConfigurationError("Inline sync requested but no runner is configured")
            return await self.runner.run(config_id, mode, TriggerSource.MANUAL)

        trigger = InboundTrigger(config_id=config_id, mode=mode, trigger_source=TriggerSource.MANUAL)
        await self.queue.publish(self.inbound_channel, trigger.model_dump_json())
        logger.info("manual_sync_enqueued", config_id=config_id, mode=mode.value, message_id=trigger.message_id)
        return trigger

    async def run_full_sync(self, config_id: str, inline: bool = False) -> Union[SyncRun, InboundTrigger]:
        """Enqueue (or run in-process) a full inbound sync."""
        return await self._trigger(config_id, SyncMode.FULL, inline)

    async def run_incremental_sync(self, config_id: str, inline: bool = False) -> Union[SyncRun, InboundTrigger]:
        return await self._trigger(config_id, SyncMode.INCREMENTAL, inline)

    async def test_connection(self, config_id: str) -> ConnectionTestResult:
        config = await self.configurations.get(config_id)
        client = await self.registry.get(config)
        result = await self.api_factory(client, config.remote_hotel_id).test_connection()
        logger.info("connection_tested", config_id=config_id, success=result.success)
        return result

    async def current_state(self, config_id: str) -> Optional[SyncRun]:
        return await self.tracker.latest(config_id)

    async def sync_history(self, config_id: str, limit: int = 20) -> List[SyncRun]:
        return await self.tracker.history(config_id, limit=limit)

    async def recent_logs(
        self,
        config_id: str,
        limit: int = 50,
        success: Optional[bool] = None,
        entity_kind: Optional[EntityKind] = None,
    ) -> List[SyncLogEntry]:
        return await self.audit_log.recent(config_id, limit=limit, success=success, entity_kind=entity_kind)

    def client_stats(self) -> Dict[str, Any]:
        return self.registry.stats()
