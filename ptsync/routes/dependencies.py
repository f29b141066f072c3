"""Shared FastAPI dependencies for the sync service routers"""

from fastapi import HTTPException, Request

from ..config import SyncSettings
from ..services.sync_orchestrator import SyncOrchestrator
from ..shared.validators import validate_iso_date


def get_settings(request: Request) -> SyncSettings:
    return request.app.state.settings


def get_orchestrator(request: Request) -> SyncOrchestrator:
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Sync engine not running")
    return orchestrator


def request_queue_drain(request: Request) -> None:
    """Push a local edit right away instead of waiting for the next cycle"""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is not None:
        orchestrator.schedule_drain()


def parse_date_param(value: str) -> str:
    try:
        return validate_iso_date(value)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from None
