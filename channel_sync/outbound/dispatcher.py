"""
Outbound dispatcher
Queue consumer that pushes local mutations to the remote channel manager
"""

from typing import Callable, Dict, Optional

from pydantic import ValidationError as MessageValidationError

from channel_sync.adapters.qloapps.api import QloAppsAPI
from channel_sync.contracts import PMSStore, SyncDirection, SyncOperation
from channel_sync.errors import ChannelSyncError, ValidationError
from channel_sync.outbound.handlers import OUTBOUND_HANDLERS, Handler, OutboundContext, PushOutcome
from channel_sync.queue.consumer import QueueConsumer
from channel_sync.queue.messages import MessageKind, parse_outbound_message
from channel_sync.queue.transport import Delivery, MessageQueue
from channel_sync.registry import ClientRegistry
from channel_sync.storage.audit_log import SyncAuditLog, SyncLogEntry
from channel_sync.storage.configurations import SyncConfigurationRepository, outbound_enabled
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.outbound.dispatcher")

_DEFAULT_OPERATIONS = {
    MessageKind.RESERVATION_CREATE: SyncOperation.CREATE,
    MessageKind.RESERVATION_UPDATE: SyncOperation.UPDATE,
    MessageKind.RESERVATION_CANCEL: SyncOperation.CANCEL,
    MessageKind.GUEST_CREATE: SyncOperation.CREATE,
    MessageKind.GUEST_UPDATE: SyncOperation.UPDATE,
    MessageKind.ROOM_TYPE_UPDATE: SyncOperation.UPDATE,
    MessageKind.AVAILABILITY_UPDATE: SyncOperation.UPDATE,
    MessageKind.RATE_UPDATE: SyncOperation.UPDATE,
}


class OutboundDispatcher(QueueConsumer):
    """
    Consumes the outbound channel one message at a time.

    Resolves the message's configuration and per-account client, then hands
    the message to the handler registered for its kind. Every attempted push
    produces exactly one audit entry; failures are re-raised so the consumer
    base decides between redelivery and dead-lettering.
    """

    def __init__(
        self,
        queue: MessageQueue,
        channel: str,
        configurations: SyncConfigurationRepository,
        registry: ClientRegistry,
        store: PMSStore,
        mappings: EntityMappingStore,
        audit_log: SyncAuditLog,
        handlers: Optional[Dict[MessageKind, Handler]] = None,
        api_factory: Callable[..., QloAppsAPI] = QloAppsAPI,
        **consumer_options,
    ):
        super().__init__(queue, channel, **consumer_options)
        self.configurations = configurations
        self.registry = registry
        self.store = store
        self.mappings = mappings
        self.audit_log = audit_log
        self.handlers = dict(handlers or OUTBOUND_HANDLERS)
        self.api_factory = api_factory

        missing = set(MessageKind) - set(self.handlers)
        if missing:
            raise ValueError(f"No outbound handler registered for: {sorted(k.value for k in missing)}")

    async def handle(self, delivery: Delivery) -> None:
        try:
            message = parse_outbound_message(delivery.body)
        except MessageValidationError as e:
            raise ValidationError(f"Malformed outbound message: {e.error_count()} validation error(s)", errors=[str(e)])
        await self.dispatch(message)

    async def dispatch(self, message) -> PushOutcome:
        """Push one outbound message; raises on failure after auditing it."""
        kind = MessageKind(message.kind)
        config = await self.configurations.get(message.config_id)

        if not outbound_enabled(config, kind):
            logger.info("outbound_sync_disabled", config_id=config.id, kind=kind.value, entity_id=message.entity_id)
            outcome = PushOutcome.skip(kind.entity_kind, message.entity_id, "sync_disabled")
            await self._audit_skip(config.id, outcome)
            return outcome

        client = await self.registry.get(config)
        ctx = OutboundContext(
            config=config,
            api=self.api_factory(client, config.remote_hotel_id),
            store=self.store,
            mappings=self.mappings,
        )

        log = logger.bind(config_id=config.id, kind=kind.value, entity_id=message.entity_id, message_id=message.message_id)
        try:
            outcome = await self.handlers[kind](ctx, message)
        except Exception as e:
            await self._audit_failure(message, kind, e)
            log.warning(
                "outbound_push_failed",
                error_code=e.code if isinstance(e, ChannelSyncError) else type(e).__name__,
                error=str(e),
            )
            raise

        if outcome.skipped:
            log.info("outbound_push_skipped", reason=outcome.reason)
            await self._audit_skip(config.id, outcome)
            return outcome

        await self.audit_log.record(SyncLogEntry(
            config_id=config.id,
            direction=SyncDirection.OUTBOUND,
            entity_kind=outcome.entity_kind,
            operation=outcome.operation,
            success=True,
            local_id=outcome.local_id,
            remote_id=outcome.remote_id,
        ))
        log.info("outbound_push_succeeded", operation=outcome.operation.value, remote_id=outcome.remote_id)
        return outcome

    async def _audit_skip(self, config_id: str, outcome: PushOutcome) -> None:
        # Skips are successful no-ops; the reason goes in error_message
        await self.audit_log.record(SyncLogEntry(
            config_id=config_id,
            direction=SyncDirection.OUTBOUND,
            entity_kind=outcome.entity_kind,
            operation=SyncOperation.SKIP,
            success=True,
            local_id=outcome.local_id,
            error_message=outcome.reason,
        ))

    async def _audit_failure(self, message, kind: MessageKind, error: Exception) -> None:
        entry = SyncLogEntry(
            config_id=message.config_id,
            direction=SyncDirection.OUTBOUND,
            entity_kind=kind.entity_kind,
            operation=_DEFAULT_OPERATIONS[kind],
            success=False,
            local_id=message.entity_id,
            remote_id=getattr(error, "remote_id", None),
            error_message=str(error),
            error_code=error.code if isinstance(error, ChannelSyncError) else type(error).__name__,
        )
        try:
            await self.audit_log.record(entry)
        except Exception as audit_error:
            # The push failure is the error that matters; it is re-raised by the caller
            logger.error("outbound_audit_write_failed", config_id=message.config_id, error=str(audit_error))
