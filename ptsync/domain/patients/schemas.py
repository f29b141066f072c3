"""Patient schemas - Pydantic models for patient records and requests"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.time_utils import utcnow
from ...shared.validators import validate_email, validate_us_phone


class PatientStatus(str, Enum):
    ACTIVE = "active"
    DISCHARGED = "discharged"
    EVALUATION = "evaluation"
    FOR_OTHER_PT = "for-other-pt"


PATIENT_STATUSES = {status.value for status in PatientStatus}


class AlternateContact(BaseModel):
    firstName: str
    phone: str
    relationship: Optional[str] = None


class PatientRecord(BaseModel):
    """Full patient record as held in the local store"""

    model_config = ConfigDict(from_attributes=True)

    id: str
    full_name: str
    nicknames: list[str] = Field(default_factory=list)
    phone: str = ""
    alternate_contacts: list[AlternateContact] = Field(default_factory=list)
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    email: Optional[str] = None
    status: str = PatientStatus.ACTIVE.value
    notes: str = ""
    chip_note: Optional[str] = None
    for_other_pt_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @field_validator("nicknames", "alternate_contacts", mode="before")
    @classmethod
    def none_to_empty_list(cls, v):
        return v or []

    @field_validator("phone", "address", "notes", mode="before")
    @classmethod
    def none_to_empty_string(cls, v):
        return v or ""


class PatientCreate(BaseModel):
    fullName: str
    nicknames: list[str] = Field(default_factory=list)
    phone: str = ""
    alternateContacts: list[AlternateContact] = Field(default_factory=list)
    address: str = ""
    lat: Optional[float] = None
    lng: Optional[float] = None
    email: Optional[str] = None
    status: PatientStatus = PatientStatus.ACTIVE
    notes: str = ""

    @field_validator("fullName")
    @classmethod
    def validate_full_name(cls, v):
        if not v or not v.strip():
            raise ValueError("Full name is required")
        return v.strip()

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return validate_us_phone(v) or ""

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)


class PatientUpdate(BaseModel):
    fullName: Optional[str] = None
    nicknames: Optional[list[str]] = None
    phone: Optional[str] = None
    alternateContacts: Optional[list[AlternateContact]] = None
    address: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    email: Optional[str] = None
    notes: Optional[str] = None
    chipNote: Optional[str] = None

    @field_validator("fullName")
    @classmethod
    def validate_full_name(cls, v):
        if v is not None and not v.strip():
            raise ValueError("Full name cannot be blank")
        return v.strip() if v else v

    @field_validator("phone")
    @classmethod
    def validate_phone(cls, v):
        return validate_us_phone(v)

    @field_validator("email")
    @classmethod
    def validate_email_format(cls, v):
        return validate_email(v)


class DedupeResult(BaseModel):
    removedIds: list[str] = Field(default_factory=list)
    canonicalIds: list[str] = Field(default_factory=list)
    movedAppointmentIds: list[str] = Field(default_factory=list)


class PatientResponse(BaseModel):
    id: str
    fullName: str
    nicknames: list[str]
    phone: str
    alternateContacts: list[AlternateContact]
    address: str
    lat: Optional[float] = None
    lng: Optional[float] = None
    email: Optional[str] = None
    status: str
    notes: str
    chipNote: Optional[str] = None
    forOtherPtAt: Optional[datetime] = None
    updatedAt: datetime

    @classmethod
    def from_record(cls, record: PatientRecord) -> "PatientResponse":
        return cls(
            id=record.id,
            fullName=record.full_name,
            nicknames=record.nicknames,
            phone=record.phone,
            alternateContacts=record.alternate_contacts,
            address=record.address,
            lat=record.lat,
            lng=record.lng,
            email=record.email,
            status=record.status,
            notes=record.notes,
            chipNote=record.chip_note,
            forOtherPtAt=record.for_other_pt_at,
            updatedAt=record.updated_at,
        )
