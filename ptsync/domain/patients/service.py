"""Patient service - Local mutations that queue patients for sheet sync"""

import logging
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...models import Patient, generate_local_id
from ...shared.time_utils import utcnow
from ..appointments.schemas import RecordSyncStatus
from ..sync_queue.repository import SyncQueueRepository
from ..sync_queue.schemas import EntityKind, SyncAction
from .dedup import dedupe_local_patients
from .repository import PatientRepository
from .schemas import DedupeResult, PatientCreate, PatientRecord, PatientStatus, PatientUpdate

logger = logging.getLogger(__name__)


class PatientService:
    """Service layer for patient business logic"""

    def __init__(self, db: Session, settings: Optional[SyncSettings] = None):
        self.db = db
        self.settings = settings or SyncSettings()
        self.repo = PatientRepository()

    def _enqueue(self, action: SyncAction, patient_id: str) -> None:
        if not self.settings.spreadsheet_id:
            return
        SyncQueueRepository.enqueue(self.db, action, EntityKind.PATIENT, {"entityId": patient_id})

    def get_patient(self, patient_id: str) -> Patient:
        patient = self.repo.get(self.db, patient_id)
        if not patient:
            raise HTTPException(status_code=404, detail="Patient not found")
        return patient

    def create_patient(self, data: PatientCreate) -> Patient:
        logger.info(f"📥 Creating patient {data.fullName}")
        record = PatientRecord(
            id=generate_local_id(),
            full_name=data.fullName,
            nicknames=[n.strip() for n in data.nicknames if n.strip()],
            phone=data.phone,
            alternate_contacts=data.alternateContacts,
            address=data.address,
            lat=data.lat,
            lng=data.lng,
            email=data.email,
            status=data.status.value,
            notes=data.notes,
        )
        patient = self.repo.put(self.db, record)
        self._enqueue(SyncAction.CREATE, patient.id)
        return patient

    def _apply(self, patient: Patient, **changes) -> Patient:
        record = self.repo.to_record(patient).model_copy(
            update={**changes, "updated_at": utcnow()}
        )
        patient = self.repo.put(self.db, record)
        self._enqueue(SyncAction.UPDATE, patient.id)
        return patient

    def update_patient(self, patient_id: str, data: PatientUpdate) -> Patient:
        patient = self.get_patient(patient_id)

        field_map = {
            "fullName": "full_name",
            "nicknames": "nicknames",
            "phone": "phone",
            "alternateContacts": "alternate_contacts",
            "address": "address",
            "lat": "lat",
            "lng": "lng",
            "email": "email",
            "notes": "notes",
            "chipNote": "chip_note",
        }
        changes = {}
        for field in data.model_fields_set:
            column = field_map[field]
            value = getattr(data, field)
            if value is None:
                if column in ("full_name", "nicknames", "alternate_contacts"):
                    continue
                if column in ("phone", "address", "notes"):
                    value = ""
            changes[column] = value

        return self._apply(patient, **changes)

    def discharge(self, patient_id: str) -> Patient:
        patient = self.get_patient(patient_id)
        logger.info(f"🔄 Discharging patient {patient_id}")
        return self._apply(patient, status=PatientStatus.DISCHARGED.value)

    def mark_for_other_pt(self, patient_id: str) -> Patient:
        patient = self.get_patient(patient_id)
        return self._apply(patient, status=PatientStatus.FOR_OTHER_PT.value, for_other_pt_at=utcnow())

    def reactivate(self, patient_id: str) -> Patient:
        patient = self.get_patient(patient_id)
        return self._apply(patient, status=PatientStatus.ACTIVE.value, for_other_pt_at=None)

    def delete_patient(self, patient_id: str) -> None:
        self.get_patient(patient_id)
        self.repo.delete(self.db, patient_id)
        self._enqueue(SyncAction.DELETE, patient_id)
        logger.info(f"✅ Patient {patient_id} deleted")

    def dedupe_and_enqueue(self) -> DedupeResult:
        """Merge duplicate patients locally, then queue the sheet and calendar changes"""
        calendar_configured = bool(self.settings.calendar_id)
        moved_status = RecordSyncStatus.PENDING if calendar_configured else RecordSyncStatus.LOCAL
        result = dedupe_local_patients(self.db, moved_status.value)

        for removed_id in result.removedIds:
            self._enqueue(SyncAction.DELETE, removed_id)
        for canonical_id in result.canonicalIds:
            self._enqueue(SyncAction.UPDATE, canonical_id)
        if calendar_configured:
            for appointment_id in result.movedAppointmentIds:
                SyncQueueRepository.enqueue(
                    self.db, SyncAction.UPDATE, EntityKind.APPOINTMENT, {"entityId": appointment_id}
                )

        return result
