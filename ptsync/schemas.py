"""
Remote record models

Snapshots read from the spreadsheet and calendar are parsed into these
models before reconciliation, so the reconciler never sees raw API payloads.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from .domain.patients.schemas import AlternateContact, PatientRecord
from .shared.time_utils import utcnow

# Keys of the private extended properties written on every calendar event
CALENDAR_METADATA_KEYS = {
    "appointment_id": "ptSchedulerAppointmentId",
    "patient_id": "ptSchedulerPatientId",
    "patient_name": "ptSchedulerPatientName",
    "patient_phone": "ptSchedulerPatientPhone",
    "patient_address": "ptSchedulerPatientAddress",
    "status": "ptSchedulerStatus",
    "duration_minutes": "ptSchedulerDurationMinutes",
    "visit_type": "ptSchedulerVisitType",
}


class SheetPatient(BaseModel):
    """One row of the Patients tab"""

    id: str
    full_name: str
    nicknames: list[str] = Field(default_factory=list)
    phone: str = ""
    alternate_contacts: list[AlternateContact] = Field(default_factory=list)
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    status: str = "active"
    notes: str = ""
    email: Optional[str] = None
    for_other_pt_at: Optional[datetime] = None
    chip_note: Optional[str] = None

    def to_record(self, existing: Optional[PatientRecord] = None) -> PatientRecord:
        """Build the local record, keeping local-only fields from an existing row"""
        now = utcnow()
        chip_note = self.chip_note
        if not chip_note and existing is not None:
            chip_note = existing.chip_note

        return PatientRecord(
            id=self.id,
            full_name=self.full_name,
            nicknames=self.nicknames,
            phone=self.phone,
            alternate_contacts=self.alternate_contacts,
            address=self.address,
            lat=self.lat,
            lng=self.lng,
            email=self.email,
            status=self.status,
            notes=self.notes,
            chip_note=chip_note,
            for_other_pt_at=self.for_other_pt_at,
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )


class SheetDayNote(BaseModel):
    """One row of the DayNotes tab"""

    id: str
    date: str
    text: str = ""
    color: str = "yellow"
    start_minutes: Optional[int] = 720


class RemoteCalendarEvent(BaseModel):
    """Timed event read from the calendar"""

    google_event_id: str
    summary: str = ""
    location: Optional[str] = None
    description: Optional[str] = None
    start: datetime
    end: datetime
    private_metadata: dict[str, str] = Field(default_factory=dict)

    def metadata(self, key: str) -> str:
        """Trimmed metadata value by short key name, empty when absent"""
        return (self.private_metadata.get(CALENDAR_METADATA_KEYS[key]) or "").strip()


class SnapshotResult(BaseModel):
    upserted: int = 0
    skipped: int = 0
    deleted: int = 0


class CalendarReconcileResult(BaseModel):
    upserted: int = 0
    skipped: int = 0
    deleted: int = 0
    importedPatients: int = 0
