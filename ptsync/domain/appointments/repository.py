"""Appointment repository - Database operations for appointments and calendar links"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Appointment, CalendarEventLink
from ...shared.time_utils import utcnow


class AppointmentRepository:
    """Repository for appointment database operations"""

    @staticmethod
    def get(db: Session, appointment_id: str) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def by_date_range(db: Session, start_date: str, end_date: str) -> list[Appointment]:
        """Appointments with start_date <= date <= end_date (YYYY-MM-DD strings)"""
        return (
            db.query(Appointment)
            .filter(Appointment.date >= start_date, Appointment.date <= end_date)
            .order_by(Appointment.date, Appointment.start_time)
            .all()
        )

    @staticmethod
    def put(db: Session, commit: bool = True, **values) -> Appointment:
        """Insert or overwrite the row identified by values["id"]"""
        appointment = None
        if values.get("id"):
            appointment = db.query(Appointment).filter(Appointment.id == values["id"]).first()

        if appointment is None:
            appointment = Appointment(**values)
            db.add(appointment)
        else:
            for key, value in values.items():
                setattr(appointment, key, value)

        if commit:
            db.commit()
            db.refresh(appointment)
        else:
            db.flush()
        return appointment

    @staticmethod
    def update(db: Session, appointment: Appointment, commit: bool = True, **updates) -> Appointment:
        for key, value in updates.items():
            if hasattr(appointment, key):
                setattr(appointment, key, value)
        appointment.updated_at = utcnow()

        if commit:
            db.commit()
            db.refresh(appointment)
        return appointment

    @staticmethod
    def delete(db: Session, appointment_id: str, commit: bool = True) -> bool:
        appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
        if appointment is None:
            return False

        db.delete(appointment)
        if commit:
            db.commit()
        return True

    @staticmethod
    def reassign_patient(
        db: Session, from_patient_id: str, to_patient_id: str, sync_status: str
    ) -> list[str]:
        """
        Point every appointment of one patient at another and mark them with
        sync_status so the calendar copy is rewritten. Caller commits.
        Returns the moved appointment ids.
        """
        query = db.query(Appointment).filter(Appointment.patient_id == from_patient_id)
        moved_ids = [row.id for row in query.with_entities(Appointment.id).order_by(Appointment.id)]
        if moved_ids:
            query.update(
                {
                    Appointment.patient_id: to_patient_id,
                    Appointment.sync_status: sync_status,
                    Appointment.updated_at: utcnow(),
                },
                synchronize_session=False,
            )
        return moved_ids


class CalendarLinkRepository:
    """Repository for appointment <-> calendar event link rows"""

    @staticmethod
    def get(db: Session, event_id: str) -> Optional[CalendarEventLink]:
        return db.query(CalendarEventLink).filter(CalendarEventLink.id == event_id).first()

    @staticmethod
    def by_appointment(db: Session, appointment_id: str) -> list[CalendarEventLink]:
        return (
            db.query(CalendarEventLink)
            .filter(CalendarEventLink.appointment_id == appointment_id)
            .all()
        )

    @staticmethod
    def upsert(
        db: Session, event_id: str, appointment_id: str, calendar_id: str, commit: bool = True
    ) -> CalendarEventLink:
        link = db.query(CalendarEventLink).filter(CalendarEventLink.id == event_id).first()
        if link is None:
            link = CalendarEventLink(id=event_id)
            db.add(link)

        link.appointment_id = appointment_id
        link.google_event_id = event_id
        link.calendar_id = calendar_id
        link.last_synced_at = utcnow()

        if commit:
            db.commit()
            db.refresh(link)
        else:
            db.flush()
        return link

    @staticmethod
    def delete(db: Session, event_id: str, commit: bool = True) -> bool:
        deleted = (
            db.query(CalendarEventLink)
            .filter(CalendarEventLink.id == event_id)
            .delete(synchronize_session=False)
        )
        if commit:
            db.commit()
        return bool(deleted)

    @staticmethod
    def delete_for_appointment(db: Session, appointment_id: str, commit: bool = True) -> int:
        deleted = (
            db.query(CalendarEventLink)
            .filter(CalendarEventLink.appointment_id == appointment_id)
            .delete(synchronize_session=False)
        )
        if commit:
            db.commit()
        return deleted
