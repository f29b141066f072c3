"""Appointment service - Local mutations that queue appointments for calendar sync"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...models import Appointment
from ..sync_queue.repository import SyncQueueRepository
from ..sync_queue.schemas import EntityKind, SyncAction
from .repository import AppointmentRepository, CalendarLinkRepository
from .schemas import AppointmentCreate, AppointmentStatus, AppointmentUpdate, RecordSyncStatus

logger = logging.getLogger(__name__)


class AppointmentService:
    """Service layer for appointment business logic"""

    def __init__(self, db: Session, settings: Optional[SyncSettings] = None):
        self.db = db
        self.settings = settings or SyncSettings()
        self.repo = AppointmentRepository()

    @property
    def calendar_configured(self) -> bool:
        return bool(self.settings.calendar_id)

    def _enqueue(
        self, action: SyncAction, appointment_id: str, calendar_event_id: Optional[str] = None
    ) -> None:
        if not self.calendar_configured:
            return

        payload = {"entityId": appointment_id}
        if calendar_event_id:
            payload["calendarEventId"] = calendar_event_id
        SyncQueueRepository.enqueue(self.db, action, EntityKind.APPOINTMENT, payload)

    def _local_sync_status(self) -> str:
        if self.calendar_configured:
            return RecordSyncStatus.PENDING.value
        return RecordSyncStatus.LOCAL.value

    def get_appointment(self, appointment_id: str) -> Appointment:
        appointment = self.repo.get(self.db, appointment_id)
        if not appointment:
            raise HTTPException(status_code=404, detail="Appointment not found")
        return appointment

    def create_appointment(self, data: AppointmentCreate) -> Appointment:
        appointment = self.repo.put(
            self.db,
            patient_id=data.patientId,
            date=data.date,
            start_time=data.startTime,
            duration=data.duration,
            status=data.status.value,
            notes=data.notes,
            visit_type=data.visitType,
            sync_status=self._local_sync_status(),
        )
        self._enqueue(SyncAction.CREATE, appointment.id)
        logger.info(f"✅ Appointment {appointment.id} created for {appointment.date} {appointment.start_time}")
        return appointment

    def update_appointment(self, appointment_id: str, data: AppointmentUpdate) -> Appointment:
        appointment = self.get_appointment(appointment_id)

        field_map = {
            "patientId": "patient_id",
            "date": "date",
            "startTime": "start_time",
            "duration": "duration",
            "status": "status",
            "notes": "notes",
            "visitType": "visit_type",
        }
        updates = {}
        for field in data.model_fields_set:
            value = getattr(data, field)
            if isinstance(value, AppointmentStatus):
                value = value.value
            updates[field_map[field]] = value

        if self.calendar_configured:
            updates["sync_status"] = RecordSyncStatus.PENDING.value

        appointment = self.repo.update(self.db, appointment, **updates)
        self._enqueue(SyncAction.UPDATE, appointment.id)
        return appointment

    def mark_complete(self, appointment_id: str) -> Appointment:
        return self.update_appointment(
            appointment_id, AppointmentUpdate(status=AppointmentStatus.COMPLETED)
        )

    def delete_appointment(self, appointment_id: str) -> None:
        """Delete locally and queue removal of the linked calendar event"""
        appointment = self.get_appointment(appointment_id)
        event_id = appointment.calendar_event_id

        self.repo.delete(self.db, appointment_id, commit=False)
        CalendarLinkRepository.delete_for_appointment(self.db, appointment_id, commit=False)
        self.db.commit()

        if event_id:
            self._enqueue(SyncAction.DELETE, appointment_id, event_id)
        logger.info(f"✅ Appointment {appointment_id} deleted")
