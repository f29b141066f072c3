"""Day note repository - Database operations for day notes"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import DayNote
from ...shared.time_utils import utcnow


class DayNoteRepository:
    """Repository for day note database operations"""

    @staticmethod
    def get(db: Session, note_id: str) -> Optional[DayNote]:
        return db.query(DayNote).filter(DayNote.id == note_id).first()

    @staticmethod
    def by_date_range(db: Session, start_date: str, end_date: str) -> list[DayNote]:
        return (
            db.query(DayNote)
            .filter(DayNote.date >= start_date, DayNote.date <= end_date)
            .order_by(DayNote.date, DayNote.start_minutes)
            .all()
        )

    @staticmethod
    def put(db: Session, commit: bool = True, **values) -> DayNote:
        note = None
        if values.get("id"):
            note = db.query(DayNote).filter(DayNote.id == values["id"]).first()

        if note is None:
            note = DayNote(**values)
            db.add(note)
        else:
            for key, value in values.items():
                setattr(note, key, value)

        if commit:
            db.commit()
            db.refresh(note)
        else:
            db.flush()
        return note

    @staticmethod
    def update(db: Session, note: DayNote, **updates) -> DayNote:
        for key, value in updates.items():
            if value is not None and hasattr(note, key):
                setattr(note, key, value)
        note.updated_at = utcnow()

        db.commit()
        db.refresh(note)
        return note

    @staticmethod
    def delete(db: Session, note_id: str, commit: bool = True) -> bool:
        note = db.query(DayNote).filter(DayNote.id == note_id).first()
        if note is None:
            return False

        db.delete(note)
        if commit:
            db.commit()
        return True
