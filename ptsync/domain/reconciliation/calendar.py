"""
Calendar pull reconciliation

Each fetched event is resolved to a local appointment by, in order, the
correlation id in its private metadata, an exact patient name match on the
event title, or a newly imported patient with a slug-based id. Appointments
still marked local/pending are left untouched. Afterwards any linked
appointment starting inside the fetched window whose event is gone is
deleted.
"""

import logging
import re
from datetime import datetime, timezone, tzinfo
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from ...schemas import CalendarReconcileResult, RemoteCalendarEvent
from ...shared.time_utils import to_iso_date, utcnow
from ..appointments.repository import AppointmentRepository, CalendarLinkRepository
from ..appointments.schemas import (
    PROTECTED_SYNC_STATUSES,
    RecordSyncStatus,
    normalize_appointment_status,
    normalize_visit_type,
)
from ..patients.repository import PatientRepository
from ..patients.schemas import PatientRecord, PatientStatus

logger = logging.getLogger(__name__)

UNKNOWN_PATIENT_NAME = "Unknown Patient"
MIN_DURATION_MINUTES = 15
MAX_SLUG_LENGTH = 48


def extract_patient_name(summary: Optional[str]) -> Optional[str]:
    """Event title without the leading "PT:" marker"""
    candidate = re.sub(r"^PT:\s*", "", summary or "", flags=re.IGNORECASE).strip()
    return candidate or None


def build_imported_patient_id(patient_name: str, fallback_event_id: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", (patient_name or "").lower()).strip("-")[:MAX_SLUG_LENGTH]
    if not slug:
        return f"gcal-patient-{fallback_event_id}"
    return f"gcal-patient-{slug}"


def event_duration_minutes(event: RemoteCalendarEvent) -> int:
    minutes = round((event.end - event.start).total_seconds() / 60)
    return max(MIN_DURATION_MINUTES, minutes)


def _to_local(value: datetime, local_tz: tzinfo) -> datetime:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(local_tz)


def appointment_start(appointment, local_tz: tzinfo) -> Optional[datetime]:
    """Aware start of a stored appointment, None when its date or time is unreadable"""
    try:
        naive = datetime.strptime(f"{appointment.date} {appointment.start_time}", "%Y-%m-%d %H:%M")
    except (TypeError, ValueError):
        return None
    return naive.replace(tzinfo=local_tz)


def _resolve_patient(
    db: Session, event: RemoteCalendarEvent, patient_name: str
) -> tuple[str, bool]:
    """Return (patient_id, changed) creating or filling in the patient as needed"""
    patient_id = event.metadata("patient_id")
    if not patient_id:
        match = PatientRepository.find_by_full_name(db, extract_patient_name(event.summary) or "")
        patient_id = match.id if match else build_imported_patient_id(patient_name, event.google_event_id)

    phone = event.metadata("patient_phone")
    address = event.metadata("patient_address") or (event.location or "").strip()

    existing = PatientRepository.get(db, patient_id)
    if existing is None:
        PatientRepository.put(
            db,
            PatientRecord(
                id=patient_id,
                full_name=patient_name,
                phone=phone,
                address=address,
                status=PatientStatus.ACTIVE.value,
                notes=f"Imported from Google Calendar event {event.google_event_id}",
            ),
            commit=False,
        )
        logger.info(f"📥 Imported patient {patient_id} from calendar event {event.google_event_id}")
        return patient_id, True

    # Only blank identity fields are filled in from the calendar
    full_name = (existing.full_name or "").strip() or patient_name or UNKNOWN_PATIENT_NAME
    next_phone = (existing.phone or "").strip() or phone
    next_address = (existing.address or "").strip() or address
    if (full_name, next_phone, next_address) == (existing.full_name, existing.phone, existing.address):
        return patient_id, False

    existing.full_name = full_name
    existing.phone = next_phone
    existing.address = next_address
    existing.updated_at = utcnow()
    db.flush()
    return patient_id, True


def reconcile_calendar_events(
    db: Session,
    calendar_id: str,
    events: Sequence[RemoteCalendarEvent],
    time_min: datetime,
    time_max: datetime,
    local_tz: tzinfo,
) -> CalendarReconcileResult:
    """
    Apply one fetched calendar window to local appointments.

    time_min and time_max are the bounds the events were listed with; naive
    values are UTC. Only appointments starting inside them can be deleted.
    """
    result = CalendarReconcileResult()

    try:
        for event in events:
            start = _to_local(event.start, local_tz)
            metadata_appointment_id = event.metadata("appointment_id")
            appointment_id = metadata_appointment_id or f"gcal-{event.google_event_id}"
            patient_name = (
                event.metadata("patient_name")
                or extract_patient_name(event.summary)
                or UNKNOWN_PATIENT_NAME
            )

            existing = AppointmentRepository.get(db, appointment_id)
            if existing is not None and existing.sync_status in PROTECTED_SYNC_STATUSES:
                # Unpushed local edit; the queue will push it
                result.skipped += 1
                continue

            patient_id, patient_changed = _resolve_patient(db, event, patient_name)
            if patient_changed:
                result.importedPatients += 1

            AppointmentRepository.put(
                db,
                commit=False,
                id=appointment_id,
                patient_id=patient_id,
                date=to_iso_date(start),
                start_time=start.strftime("%H:%M"),
                duration=event_duration_minutes(event),
                status=normalize_appointment_status(event.metadata("status")),
                visit_type=normalize_visit_type(event.metadata("visit_type")),
                sync_status=RecordSyncStatus.SYNCED.value,
                calendar_event_id=event.google_event_id,
                notes=event.description,
                created_at=existing.created_at if existing else utcnow(),
                updated_at=utcnow(),
            )
            CalendarLinkRepository.upsert(
                db, event.google_event_id, appointment_id, calendar_id, commit=False
            )
            result.upserted += 1

        fetched_ids = {event.google_event_id for event in events}
        window_start = _to_local(time_min, local_tz)
        window_end = _to_local(time_max, local_tz)
        local_appointments = AppointmentRepository.by_date_range(
            db, to_iso_date(window_start), to_iso_date(window_end)
        )
        for appointment in local_appointments:
            if not appointment.calendar_event_id or appointment.calendar_event_id in fetched_ids:
                continue
            if appointment.sync_status in PROTECTED_SYNC_STATUSES:
                continue
            local_start = appointment_start(appointment, local_tz)
            if local_start is None or not window_start <= local_start < window_end:
                continue
            logger.info(
                f"🗑️ Calendar event {appointment.calendar_event_id} is gone, "
                f"deleting appointment {appointment.id}"
            )
            CalendarLinkRepository.delete_for_appointment(db, appointment.id, commit=False)
            AppointmentRepository.delete(db, appointment.id, commit=False)
            result.deleted += 1

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info(
        f"📊 Calendar {calendar_id}: {result.upserted} upserted, {result.skipped} skipped, "
        f"{result.deleted} deleted, {result.importedPatients} patients imported"
    )
    return result
