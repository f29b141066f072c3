import uuid

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)

from .database import Base
from .shared.time_utils import utcnow


def generate_local_id():
    """Generate a unique local ID for entities created on this device"""
    return str(uuid.uuid4())


class Patient(Base):
    __tablename__ = "patients"

    id = Column(String(128), primary_key=True, default=generate_local_id)
    full_name = Column(String(255), nullable=False, index=True)
    nicknames = Column(JSON, default=list, nullable=False)  # ["Bob", "Bobby"]
    phone = Column(String(50), default="", nullable=False)
    # [{"firstName": "Mary", "phone": "555-111-2222", "relationship": "Daughter"}]
    alternate_contacts = Column(JSON, default=list, nullable=False)
    address = Column(String(500), default="", nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    email = Column(String(255), nullable=True)
    # active, discharged, evaluation, for-other-pt
    status = Column(String(50), default="active", nullable=False, index=True)
    notes = Column(Text, default="", nullable=False)
    chip_note = Column(String(255), nullable=True)  # Local-only annotation, never on the sheet
    for_other_pt_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(String(128), primary_key=True, default=generate_local_id)
    patient_id = Column(String(128), nullable=False, index=True)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    start_time = Column(String(5), nullable=False)  # HH:MM
    duration = Column(Integer, default=60, nullable=False)  # minutes
    # scheduled, completed, cancelled, no-show, on-hold
    status = Column(String(20), default="scheduled", nullable=False, index=True)
    # local, pending, synced, error - local/pending protect the row from calendar pulls
    sync_status = Column(String(20), default="local", nullable=False, index=True)
    calendar_event_id = Column(String(1024), nullable=True)
    notes = Column(Text, nullable=True)
    visit_type = Column(String(10), nullable=True)  # PT00..PT33, NOMNC or null
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class CalendarEventLink(Base):
    """Maps a local appointment to the remote calendar event created for it"""

    __tablename__ = "calendar_events"

    id = Column(String(1024), primary_key=True)  # Same as google_event_id
    appointment_id = Column(String(128), nullable=False, index=True)
    google_event_id = Column(String(1024), nullable=False, index=True)
    calendar_id = Column(String(255), nullable=False)
    last_synced_at = Column(DateTime, default=utcnow, nullable=False)


class DayNote(Base):
    __tablename__ = "day_notes"

    id = Column(String(128), primary_key=True, default=generate_local_id)
    date = Column(String(10), nullable=False, index=True)  # YYYY-MM-DD
    text = Column(Text, default="", nullable=False)
    color = Column(String(20), default="yellow", nullable=False)
    start_minutes = Column(Integer, default=720, nullable=True)  # minutes from midnight
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)


class SyncQueueRecord(Base):
    """Durable row behind a sync queue item"""

    __tablename__ = "sync_queue"

    id = Column(Integer, primary_key=True, autoincrement=True)
    action = Column(String(10), nullable=False)  # create, update, delete
    entity_kind = Column(String(20), nullable=False, index=True)  # patient, appointment, ...
    payload = Column(JSON, default=dict, nullable=False)  # always carries entityId
    # pending, processing, failed, synced (conflict is reserved)
    status = Column(String(20), default="pending", nullable=False, index=True)
    retry_count = Column(Integer, default=0, nullable=False)
    last_error = Column(Text, nullable=True)
    next_retry_at = Column(DateTime, nullable=True, index=True)
    idempotency_key = Column(String(512), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)


class TrackedRemoteIdSet(Base):
    """Remote ids seen in the last successful reconciliation for one owner key"""

    __tablename__ = "tracked_remote_ids"

    owner_key = Column(String(255), primary_key=True)  # spreadsheet id or calendar id
    entity_kind = Column(String(20), primary_key=True)
    ids = Column(JSON, default=list, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
