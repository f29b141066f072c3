"""Day note service - Local mutations that queue day notes for sheet sync"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...models import DayNote
from ..sync_queue.repository import SyncQueueRepository
from ..sync_queue.schemas import EntityKind, SyncAction
from .repository import DayNoteRepository
from .schemas import DayNoteCreate, DayNoteUpdate

logger = logging.getLogger(__name__)


class DayNoteService:
    """Service layer for day note business logic"""

    def __init__(self, db: Session, settings: Optional[SyncSettings] = None):
        self.db = db
        self.settings = settings or SyncSettings()
        self.repo = DayNoteRepository()

    def _enqueue(self, action: SyncAction, note_id: str) -> None:
        if not self.settings.spreadsheet_id:
            return
        SyncQueueRepository.enqueue(
            self.db, action, EntityKind.DAY_NOTE, {"entityId": note_id}
        )

    def get_note(self, note_id: str) -> DayNote:
        note = self.repo.get(self.db, note_id)
        if not note:
            raise HTTPException(status_code=404, detail="Day note not found")
        return note

    def create_note(self, data: DayNoteCreate) -> DayNote:
        note = self.repo.put(
            self.db,
            date=data.date,
            text=data.text,
            color=data.color.value,
            start_minutes=data.startMinutes,
        )
        self._enqueue(SyncAction.CREATE, note.id)
        logger.info(f"✅ Day note {note.id} created for {note.date}")
        return note

    def update_note(self, note_id: str, data: DayNoteUpdate) -> DayNote:
        note = self.get_note(note_id)
        note = self.repo.update(
            self.db,
            note,
            date=data.date,
            text=data.text,
            color=data.color.value if data.color else None,
            start_minutes=data.startMinutes,
        )
        self._enqueue(SyncAction.UPDATE, note.id)
        return note

    def move_note(self, note_id: str, date: str, start_minutes: int) -> DayNote:
        """Drag a note to another day and grid position"""
        return self.update_note(note_id, DayNoteUpdate(date=date, startMinutes=start_minutes))

    def delete_note(self, note_id: str) -> None:
        self.get_note(note_id)
        self.repo.delete(self.db, note_id)
        self._enqueue(SyncAction.DELETE, note_id)
        logger.info(f"✅ Day note {note_id} deleted")
