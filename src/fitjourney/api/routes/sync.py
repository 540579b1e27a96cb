"""Sync trigger, status, diagnostics and administrative routes."""
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from pydantic import BaseModel

from fitjourney.api.deps import get_services
from fitjourney.container import Services
from fitjourney.models.sync import SyncLog, SyncTable
from fitjourney.sync.engine import SyncInProgressError, SyncResult

logger = logging.getLogger(__name__)

router = APIRouter()


class SyncTriggerRequest(BaseModel):
    force_resync: bool = False  # re-enqueue streak and daily logs first


class SyncStatusResponse(BaseModel):
    state: str
    is_in_progress: bool
    last_attempt: Optional[datetime]
    last_success: Optional[datetime]
    last_error: Optional[str]
    pending: int


class QueueEntryResponse(BaseModel):
    id: int
    table_name: str
    row_id: str
    operation: str
    queued_at: datetime
    retry_count: int
    last_error: Optional[str]
    synced: bool


class SyncResultResponse(BaseModel):
    success: bool
    pushed: int
    failed: int
    skipped: int
    pulled: Dict[str, int]
    errors: List[str]


def _result_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        success=result.success,
        pushed=result.pushed,
        failed=result.failed,
        skipped=result.skipped,
        pulled=result.pulled,
        errors=result.errors,
    )


async def _do_sync(services: Services, force_resync: bool) -> None:
    """Background task: the manual sync claimed by the trigger route."""
    try:
        await services.sync.run_claimed_manual_sync(force_resync=force_resync)
    except Exception as exc:
        logger.error("Manual sync failed: %s", exc)


@router.post("/trigger", status_code=202)
async def trigger_sync(
    request: SyncTriggerRequest,
    background_tasks: BackgroundTasks,
    services: Services = Depends(get_services),
):
    """Start a manual sync. Returns immediately; the sync runs in background."""
    try:
        services.sync.claim_manual_sync()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    background_tasks.add_task(_do_sync, services, request.force_resync)
    return {"message": "Sync started", "force_resync": request.force_resync}


@router.get("/status", response_model=SyncStatusResponse)
def sync_status(services: Services = Depends(get_services)):
    """Latest sync status and number of pending queue entries."""
    status = services.sync.status
    return SyncStatusResponse(
        state=status.state.value,
        is_in_progress=status.is_in_progress,
        last_attempt=status.last_attempt,
        last_success=status.last_success,
        last_error=status.last_error,
        pending=services.queue.pending_count(services.current_user_id()),
    )


@router.get("/queue", response_model=List[QueueEntryResponse])
def sync_queue(
    include_synced: bool = False,
    limit: int = 100,
    services: Services = Depends(get_services),
):
    entries = services.queue.entries(
        services.current_user_id(), include_synced=include_synced, limit=limit
    )
    return [
        QueueEntryResponse(
            id=e.id,
            table_name=e.table_name.value,
            row_id=e.row_id,
            operation=e.operation.value,
            queued_at=e.queued_at,
            retry_count=e.retry_count,
            last_error=e.last_error,
            synced=e.synced,
        )
        for e in entries
    ]


@router.get("/history", response_model=List[SyncLog])
def sync_history(limit: int = 20, services: Services = Depends(get_services)):
    """Most recent sync attempts, newest first."""
    return services.sync.history(limit=limit)


@router.get("/stats")
async def sync_stats(services: Services = Depends(get_services)) -> Dict[str, Any]:
    """Local vs remote document counts per table."""
    return await services.sync.stats()


@router.post("/reset", response_model=SyncResultResponse)
async def reset_cloud(services: Services = Depends(get_services)):
    """Delete all remote data and re-upload everything stored locally."""
    try:
        result = await services.sync.reset_cloud_data()
    except SyncInProgressError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    return _result_response(result)


@router.post("/force/{kind}")
async def force_add(kind: SyncTable, services: Services = Depends(get_services)):
    """Re-enqueue every local row of one table."""
    count = await services.sync.force_add_to_sync_queue(kind)
    return {"table": kind.value, "enqueued": count}
