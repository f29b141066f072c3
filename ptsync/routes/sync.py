"""
API endpoints for the sync engine: status, manual sync, queue inspection
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from ..domain.patients.schemas import DedupeResult
from ..domain.sync_queue.schemas import QueueItemResponse, QueueStatus
from ..services.sync_orchestrator import CycleResult, SyncOrchestrator, SyncState
from .dependencies import get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])


class SyncStatusResponse(SyncState):
    spreadsheetConfigured: bool
    calendarConfigured: bool


@router.get("/status", response_model=SyncStatusResponse)
async def get_sync_status(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    orchestrator.refresh_pending_count()
    return SyncStatusResponse(
        **orchestrator.state.model_dump(),
        spreadsheetConfigured=bool(orchestrator.settings.spreadsheet_id),
        calendarConfigured=bool(orchestrator.settings.calendar_id),
    )


@router.post("/run", response_model=CycleResult)
async def run_sync(
    force: bool = Query(False, description="Pull the spreadsheet even inside its cooldown"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    """Sync now"""
    return await orchestrator.request_sync(force=force)


@router.get("/queue", response_model=list[QueueItemResponse])
async def list_queue(
    status: Optional[QueueStatus] = Query(None, description="Filter items by status"),
    orchestrator: SyncOrchestrator = Depends(get_orchestrator),
):
    return [QueueItemResponse.from_item(item) for item in orchestrator.list_queue(status)]


@router.post("/queue/{item_id}/retry", response_model=QueueItemResponse)
async def retry_queue_item(item_id: int, orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    """Give a failed item a fresh set of attempts"""
    item = orchestrator.retry_failed(item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Failed queue item not found")
    orchestrator.schedule_drain()
    return QueueItemResponse.from_item(item)


class DedupeResponse(BaseModel):
    removed: int
    result: DedupeResult


@router.post("/patients/dedupe", response_model=DedupeResponse)
async def dedupe_patients(orchestrator: SyncOrchestrator = Depends(get_orchestrator)):
    result = await orchestrator.dedupe_patients()
    logger.info(f"📊 Dedupe removed {len(result.removedIds)} duplicate patients")
    return DedupeResponse(removed=len(result.removedIds), result=result)
