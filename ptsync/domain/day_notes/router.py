"""Day note router - FastAPI endpoints for calendar day notes"""

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...database import get_db
from ...routes.dependencies import get_settings, parse_date_param, request_queue_drain
from .schemas import DayNoteCreate, DayNoteMove, DayNoteResponse, DayNoteUpdate
from .service import DayNoteService

router = APIRouter(prefix="/day-notes", tags=["Day Notes"])


def get_day_note_service(
    db: Session = Depends(get_db), settings: SyncSettings = Depends(get_settings)
) -> DayNoteService:
    return DayNoteService(db, settings)


@router.get("", response_model=list[DayNoteResponse])
async def list_day_notes(
    start: str = Query(...),
    end: str = Query(...),
    service: DayNoteService = Depends(get_day_note_service),
):
    notes = service.repo.by_date_range(service.db, parse_date_param(start), parse_date_param(end))
    return [DayNoteResponse.from_model(n) for n in notes]


@router.post("", response_model=DayNoteResponse)
async def create_day_note(
    data: DayNoteCreate, request: Request, service: DayNoteService = Depends(get_day_note_service)
):
    note = service.create_note(data)
    request_queue_drain(request)
    return DayNoteResponse.from_model(note)


@router.patch("/{note_id}", response_model=DayNoteResponse)
async def update_day_note(
    note_id: str,
    data: DayNoteUpdate,
    request: Request,
    service: DayNoteService = Depends(get_day_note_service),
):
    note = service.update_note(note_id, data)
    request_queue_drain(request)
    return DayNoteResponse.from_model(note)


@router.post("/{note_id}/move", response_model=DayNoteResponse)
async def move_day_note(
    note_id: str,
    data: DayNoteMove,
    request: Request,
    service: DayNoteService = Depends(get_day_note_service),
):
    note = service.move_note(note_id, data.date, data.startMinutes)
    request_queue_drain(request)
    return DayNoteResponse.from_model(note)


@router.delete("/{note_id}")
async def delete_day_note(
    note_id: str, request: Request, service: DayNoteService = Depends(get_day_note_service)
):
    service.delete_note(note_id)
    request_queue_drain(request)
    return {"message": "Day note deleted successfully"}
