"""Appointment schemas - Pydantic models for appointment requests"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_clock_time, validate_iso_date


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"
    ON_HOLD = "on-hold"


class RecordSyncStatus(str, Enum):
    """Per-record sync marker; LOCAL and PENDING protect a row from calendar pulls"""

    LOCAL = "local"
    PENDING = "pending"
    SYNCED = "synced"
    ERROR = "error"


APPOINTMENT_STATUSES = {status.value for status in AppointmentStatus}

VISIT_TYPE_CODES = (
    "PT00",
    "PT01",
    "PT02",
    "PT05",
    "PT06",
    "PT10",
    "PT11",
    "PT15",
    "PT18",
    "PT19",
    "PT33",
    "NOMNC",
)

PROTECTED_SYNC_STATUSES = (RecordSyncStatus.LOCAL.value, RecordSyncStatus.PENDING.value)


def normalize_visit_type(value: Optional[str]) -> Optional[str]:
    """Known visit type code or None"""
    code = (value or "").strip().upper()
    return code if code in VISIT_TYPE_CODES else None


def normalize_appointment_status(value: Optional[str]) -> str:
    status = (value or "").strip().lower()
    return status if status in APPOINTMENT_STATUSES else AppointmentStatus.SCHEDULED.value


class AppointmentCreate(BaseModel):
    patientId: str
    date: str
    startTime: str
    duration: int = Field(default=60, ge=15, le=240)
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    notes: Optional[str] = None
    visitType: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_iso_date(v)

    @field_validator("startTime")
    @classmethod
    def validate_start_time(cls, v):
        return validate_clock_time(v)

    @field_validator("visitType")
    @classmethod
    def validate_visit_type(cls, v):
        if v is not None and normalize_visit_type(v) is None:
            raise ValueError(f"Unknown visit type: {v}")
        return normalize_visit_type(v)


class AppointmentUpdate(BaseModel):
    patientId: Optional[str] = None
    date: Optional[str] = None
    startTime: Optional[str] = None
    duration: Optional[int] = Field(default=None, ge=15, le=240)
    status: Optional[AppointmentStatus] = None
    notes: Optional[str] = None
    visitType: Optional[str] = None

    @field_validator("date")
    @classmethod
    def validate_date(cls, v):
        return validate_iso_date(v) if v is not None else v

    @field_validator("startTime")
    @classmethod
    def validate_start_time(cls, v):
        return validate_clock_time(v) if v is not None else v

    @field_validator("visitType")
    @classmethod
    def validate_visit_type(cls, v):
        if v is not None and normalize_visit_type(v) is None:
            raise ValueError(f"Unknown visit type: {v}")
        return normalize_visit_type(v)


class AppointmentResponse(BaseModel):
    id: str
    patientId: str
    date: str
    startTime: str
    duration: int
    status: str
    syncStatus: str
    calendarEventId: Optional[str] = None
    notes: Optional[str] = None
    visitType: Optional[str] = None

    @classmethod
    def from_model(cls, appointment) -> "AppointmentResponse":
        return cls(
            id=appointment.id,
            patientId=appointment.patient_id,
            date=appointment.date,
            startTime=appointment.start_time,
            duration=appointment.duration,
            status=appointment.status,
            syncStatus=appointment.sync_status,
            calendarEventId=appointment.calendar_event_id,
            notes=appointment.notes,
            visitType=appointment.visit_type,
        )
