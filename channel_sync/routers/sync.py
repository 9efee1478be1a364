"""
Sync Administration API Endpoints
Manual sync triggers, connection checks and sync state inspection per configuration
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from pydantic import BaseModel

from channel_sync.admin import SyncAdmin
from channel_sync.client import ConnectionTestResult
from channel_sync.contracts import EntityKind
from channel_sync.errors import ChannelSyncError, ConfigurationError, SyncInProgressError
from channel_sync.queue.messages import InboundTrigger
from channel_sync.storage.sync_state import SyncRun
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.sync_api")

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncRunResponse(BaseModel):
    """Response model for a sync run"""
    id: str
    config_id: str
    mode: str
    status: str
    trigger_source: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    cursor: Optional[datetime] = None
    processed: int
    created: int
    updated: int
    failed: int
    error_message: Optional[str] = None
    duration_ms: Optional[int] = None

    @classmethod
    def from_run(cls, run: SyncRun) -> "SyncRunResponse":
        return cls(
            id=run.id,
            config_id=run.config_id,
            mode=run.mode.value,
            status=run.status.value,
            trigger_source=run.trigger_source.value,
            started_at=run.started_at,
            completed_at=run.completed_at,
            cursor=run.cursor,
            processed=run.counts.processed,
            created=run.counts.created,
            updated=run.counts.updated,
            failed=run.counts.failed,
            error_message=run.error_message,
            duration_ms=run.duration_ms,
        )


class SyncTriggerResponse(BaseModel):
    """Response model for a manual sync trigger"""
    config_id: str
    mode: str
    queued: bool
    message_id: Optional[str] = None
    run: Optional[SyncRunResponse] = None


class SyncLogResponse(BaseModel):
    direction: str
    entity_kind: str
    operation: str
    success: bool
    local_id: Optional[str] = None
    remote_id: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    sync_state_id: Optional[str] = None
    timestamp: Optional[datetime] = None


def get_sync_admin(request: Request) -> SyncAdmin:
    """Dependency to get the sync admin installed by the host application"""
    admin = getattr(request.app.state, "sync_admin", None)
    if admin is None:
        raise HTTPException(status_code=503, detail="Sync engine not initialized")
    return admin


def _http_error(config_id: str, error: ChannelSyncError) -> HTTPException:
    if isinstance(error, SyncInProgressError):
        return HTTPException(status_code=409, detail=error.message)
    if isinstance(error, ConfigurationError):
        return HTTPException(status_code=404 if error.details.get("reason") == "not_found" else 400, detail=error.message)
    logger.error("sync_admin_request_failed", config_id=config_id, error_code=error.code, error=error.message)
    return HTTPException(status_code=502, detail=error.to_dict())


async def _trigger(admin: SyncAdmin, config_id: str, full: bool, inline: bool) -> SyncTriggerResponse:
    try:
        if full:
            result = await admin.run_full_sync(config_id, inline=inline)
        else:
            result = await admin.run_incremental_sync(config_id, inline=inline)
    except ChannelSyncError as e:
        raise _http_error(config_id, e)

    if isinstance(result, InboundTrigger):
        return SyncTriggerResponse(
            config_id=config_id,
            mode=result.mode.value,
            queued=True,
            message_id=result.message_id,
        )
    return SyncTriggerResponse(
        config_id=config_id,
        mode=result.mode.value,
        queued=False,
        run=SyncRunResponse.from_run(result),
    )


@router.post("/{config_id}/full", response_model=SyncTriggerResponse, status_code=202)
async def trigger_full_sync(
    config_id: str,
    inline: bool = Query(False, description="Run in this process instead of enqueueing"),
    admin: SyncAdmin = Depends(get_sync_admin),
):
    """Trigger a full inbound sync"""
    return await _trigger(admin, config_id, full=True, inline=inline)


@router.post("/{config_id}/incremental", response_model=SyncTriggerResponse, status_code=202)
async def trigger_incremental_sync(
    config_id: str,
    inline: bool = Query(False, description="Run in this process instead of enqueueing"),
    admin: SyncAdmin = Depends(get_sync_admin),
):
    """Trigger an incremental inbound sync"""
    return await _trigger(admin, config_id, full=False, inline=inline)


@router.post("/{config_id}/test-connection", response_model=ConnectionTestResult)
async def test_connection(config_id: str, admin: SyncAdmin = Depends(get_sync_admin)):
    try:
        return await admin.test_connection(config_id)
    except ChannelSyncError as e:
        raise _http_error(config_id, e)


@router.get("/{config_id}/state", response_model=SyncRunResponse)
async def get_current_state(config_id: str, admin: SyncAdmin = Depends(get_sync_admin)):
    """Get the most recent sync run"""
    run = await admin.current_state(config_id)
    if run is None:
        raise HTTPException(status_code=404, detail=f"No sync runs for configuration {config_id}")
    return SyncRunResponse.from_run(run)


@router.get("/{config_id}/history", response_model=List[SyncRunResponse])
async def get_sync_history(
    config_id: str,
    limit: int = Query(20, ge=1, le=200),
    admin: SyncAdmin = Depends(get_sync_admin),
):
    runs = await admin.sync_history(config_id, limit=limit)
    return [SyncRunResponse.from_run(run) for run in runs]


@router.get("/{config_id}/logs", response_model=List[SyncLogResponse])
async def get_recent_logs(
    config_id: str,
    limit: int = Query(50, ge=1, le=500),
    success: Optional[bool] = Query(None),
    entity_kind: Optional[EntityKind] = Query(None),
    admin: SyncAdmin = Depends(get_sync_admin),
):
    """Get recent audit log entries, newest first"""
    entries = await admin.recent_logs(config_id, limit=limit, success=success, entity_kind=entity_kind)
    return [
        SyncLogResponse(
            direction=entry.direction.value,
            entity_kind=entry.entity_kind.value,
            operation=entry.operation.value,
            success=entry.success,
            local_id=entry.local_id,
            remote_id=entry.remote_id,
            error_message=entry.error_message,
            error_code=entry.error_code,
            sync_state_id=entry.sync_state_id,
            timestamp=entry.timestamp,
        )
        for entry in entries
    ]


@router.get("/clients", response_model=Dict[str, Any])
async def get_client_stats(admin: SyncAdmin = Depends(get_sync_admin)):
    """Get rate limiter and circuit breaker statistics for every active remote client"""
    return admin.client_stats()
