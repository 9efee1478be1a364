"""
Inbound sync runner
Pulls remote changes page by page into the local PMS, tracking progress in sync_state
"""

import time
from datetime import datetime
from typing import Callable, Optional, Sequence

from pydantic import ValidationError as MessageValidationError

from channel_sync import metrics
from channel_sync.adapters.qloapps.api import QloAppsAPI
from channel_sync.contracts import PMSStore, SyncCounts, SyncDirection, SyncMode, SyncOperation, TriggerSource
from channel_sync.errors import ChannelSyncError, ConfigurationError, SyncInProgressError, ValidationError, is_fatal
from channel_sync.inbound.handlers import INBOUND_STAGES, InboundContext, InboundStage, record_modified_at
from channel_sync.queue.consumer import QueueConsumer
from channel_sync.queue.messages import InboundTrigger
from channel_sync.queue.transport import Delivery, MessageQueue
from channel_sync.registry import ClientRegistry
from channel_sync.storage.audit_log import SyncAuditLog, SyncLogEntry
from channel_sync.storage.configurations import SyncConfigurationRepository, inbound_enabled
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.storage.sync_state import SyncRun, SyncStateTracker
from channel_sync.utils.logging import get_safe_logger
from channel_sync.utils.timeutils import as_utc

logger = get_safe_logger("channel_sync.inbound.runner")


def _error_code(error: Exception) -> str:
    return error.code if isinstance(error, ChannelSyncError) else type(error).__name__


class InboundSyncRunner:
    """
    Executes full and incremental pulls for one configuration at a time.

    Record-level failures are counted and logged without stopping the run.
    Fatal errors, and page fetches that exhaust the client's retries, fail
    the run; the cursor only moves when a run completes.
    """

    def __init__(
        self,
        configurations: SyncConfigurationRepository,
        registry: ClientRegistry,
        store: PMSStore,
        mappings: EntityMappingStore,
        tracker: SyncStateTracker,
        audit_log: SyncAuditLog,
        page_size: int = 100,
        stages: Sequence[InboundStage] = INBOUND_STAGES,
        api_factory: Callable[..., QloAppsAPI] = QloAppsAPI,
    ):
        self.configurations = configurations
        self.registry = registry
        self.store = store
        self.mappings = mappings
        self.tracker = tracker
        self.audit_log = audit_log
        self.page_size = page_size
        self.stages = tuple(stages)
        self.api_factory = api_factory

    async def run(
        self,
        config_id: str,
        mode: SyncMode = SyncMode.INCREMENTAL,
        trigger_source: TriggerSource = TriggerSource.MANUAL,
    ) -> SyncRun:
        """Run one inbound sync. Raises SyncInProgressError if another run holds the lock."""
        config = await self.configurations.get(config_id)
        if not config.sync_enabled:
            raise ConfigurationError(f"Sync is disabled for configuration {config_id}")

        run = await self.tracker.start_run(config_id, mode, trigger_source)
        started = time.monotonic()
        log = logger.bind(config_id=config_id, run_id=run.id, mode=mode.value)

        since: Optional[datetime] = None
        if mode == SyncMode.INCREMENTAL:
            since = await self.tracker.latest_cursor(config_id) or as_utc(config.last_successful_sync)

        newest: Optional[datetime] = None
        try:
            client = await self.registry.get(config)
            ctx = InboundContext(
                config=config,
                api=self.api_factory(client, config.remote_hotel_id),
                store=self.store,
                mappings=self.mappings,
            )
            for stage in self.stages:
                if not inbound_enabled(config, stage.kind):
                    log.info("inbound_stage_disabled", entity_kind=stage.kind.value)
                    continue
                stage_newest = await self._run_stage(run, ctx, stage, since)
                if stage_newest is not None and (newest is None or stage_newest > newest):
                    newest = stage_newest
        except Exception as e:
            message = f"{_error_code(e)}: {e}"
            await self.tracker.fail(run.id, message)
            await self.configurations.mark_failure(config_id, message)
            metrics.inbound_runs_total.labels(mode=mode.value, status="failed").inc()
            metrics.inbound_run_duration_seconds.labels(mode=mode.value).observe(time.monotonic() - started)
            raise

        # A run that saw nothing keeps the previous position
        completed = await self.tracker.complete(run.id, newest or since)
        await self.configurations.mark_success(config_id)
        metrics.inbound_runs_total.labels(mode=mode.value, status="completed").inc()
        metrics.inbound_run_duration_seconds.labels(mode=mode.value).observe(time.monotonic() - started)
        return completed

    async def _run_stage(
        self,
        run: SyncRun,
        ctx: InboundContext,
        stage: InboundStage,
        since: Optional[datetime],
    ) -> Optional[datetime]:
        """Pull every page for one entity kind; returns the newest modification time seen."""
        list_page = stage.list_page(ctx.api)
        newest: Optional[datetime] = None
        offset = 0

        while True:
            page = await list_page(modified_since=since, offset=offset, limit=self.page_size)
            counts = SyncCounts()
            try:
                for data in page:
                    counts.processed += 1
                    modified_at = record_modified_at(data)
                    if modified_at is not None and (newest is None or modified_at > newest):
                        newest = modified_at
                    if not await self._apply(run, ctx, stage, data, counts):
                        counts.failed += 1
            finally:
                await self.tracker.increment(run.id, counts)

            logger.debug(
                "inbound_page_processed",
                config_id=ctx.config.id,
                entity_kind=stage.kind.value,
                offset=offset,
                records=len(page),
                failed=counts.failed,
            )
            if len(page) < self.page_size:
                return newest
            offset += self.page_size

    async def _apply(self, run: SyncRun, ctx: InboundContext, stage: InboundStage, data, counts: SyncCounts) -> bool:
        remote_id = data.get("id") if isinstance(data, dict) else None
        try:
            if not isinstance(data, dict):
                raise ValidationError(f"Remote {stage.kind.value} record is not an object: {type(data).__name__}")
            outcome = await stage.handler(ctx, data)
        except Exception as e:
            if is_fatal(e):
                raise
            await self._record_failure(run, ctx, stage, remote_id, e)
            return False

        if outcome.operation == SyncOperation.CREATE:
            counts.created += 1
        else:
            counts.updated += 1
        await self.audit_log.record(SyncLogEntry(
            config_id=ctx.config.id,
            direction=SyncDirection.INBOUND,
            entity_kind=stage.kind,
            operation=outcome.operation,
            success=True,
            local_id=outcome.local_id,
            remote_id=outcome.remote_id,
            sync_state_id=run.id,
        ))
        return True

    async def _record_failure(self, run: SyncRun, ctx: InboundContext, stage: InboundStage, remote_id, error: Exception) -> None:
        operation = SyncOperation.CREATE
        local_id = None
        if remote_id not in (None, ""):
            mapping = await self.mappings.get_by_remote(ctx.config.id, stage.kind, str(remote_id))
            if mapping is not None:
                operation, local_id = SyncOperation.UPDATE, mapping.local_id

        await self.audit_log.record(SyncLogEntry(
            config_id=ctx.config.id,
            direction=SyncDirection.INBOUND,
            entity_kind=stage.kind,
            operation=operation,
            success=False,
            local_id=local_id,
            remote_id=str(remote_id) if remote_id not in (None, "") else None,
            error_message=str(error),
            error_code=_error_code(error),
            sync_state_id=run.id,
        ))
        logger.warning(
            "inbound_record_failed",
            config_id=ctx.config.id,
            run_id=run.id,
            entity_kind=stage.kind.value,
            remote_id=remote_id,
            error_code=_error_code(error),
            error=str(error),
        )


class InboundWorker(QueueConsumer):
    """Consumes inbound triggers and runs them through the runner"""

    def __init__(self, queue: MessageQueue, channel: str, runner: InboundSyncRunner, **consumer_options):
        super().__init__(queue, channel, **consumer_options)
        self.runner = runner

    async def handle(self, delivery: Delivery) -> None:
        try:
            trigger = InboundTrigger.model_validate_json(delivery.body)
        except MessageValidationError as e:
            raise ValidationError(f"Malformed inbound trigger: {e.error_count()} validation error(s)", errors=[str(e)])

        try:
            run = await self.runner.run(trigger.config_id, trigger.mode, trigger.trigger_source)
        except SyncInProgressError as e:
            # The running sync will pick up the same changes
            logger.info(
                "inbound_trigger_skipped",
                config_id=trigger.config_id,
                running_since=e.running_since.isoformat() if e.running_since else None,
            )
            return

        logger.info(
            "inbound_trigger_processed",
            config_id=trigger.config_id,
            run_id=run.id,
            processed=run.counts.processed,
            failed=run.counts.failed,
        )
