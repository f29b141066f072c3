"""Patient repository - Database operations for patients"""

from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models import Patient
from .schemas import PatientRecord


class PatientRepository:
    """Repository for patient database operations"""

    @staticmethod
    def to_record(patient: Patient) -> PatientRecord:
        return PatientRecord.model_validate(patient)

    @staticmethod
    def get(db: Session, patient_id: str) -> Optional[Patient]:
        return db.query(Patient).filter(Patient.id == patient_id).first()

    @staticmethod
    def list_all(db: Session) -> list[Patient]:
        return db.query(Patient).order_by(Patient.created_at, Patient.id).all()

    @staticmethod
    def by_status(db: Session, status: str) -> list[Patient]:
        return db.query(Patient).filter(Patient.status == status).order_by(Patient.full_name).all()

    @staticmethod
    def find_by_full_name(db: Session, full_name: str) -> Optional[Patient]:
        """Exact, case-insensitive full name match"""
        name = (full_name or "").strip().lower()
        if not name:
            return None
        return (
            db.query(Patient)
            .filter(func.lower(func.trim(Patient.full_name)) == name)
            .order_by(Patient.created_at)
            .first()
        )

    @staticmethod
    def put(db: Session, record: PatientRecord, commit: bool = True) -> Patient:
        """Insert or overwrite the row for record.id"""
        values = record.model_dump()
        values["alternate_contacts"] = [
            contact.model_dump(exclude_none=True) for contact in record.alternate_contacts
        ]

        patient = db.query(Patient).filter(Patient.id == record.id).first()
        if patient is None:
            patient = Patient(**values)
            db.add(patient)
        else:
            for key, value in values.items():
                setattr(patient, key, value)

        if commit:
            db.commit()
            db.refresh(patient)
        else:
            db.flush()
        return patient

    @staticmethod
    def delete(db: Session, patient_id: str, commit: bool = True) -> bool:
        patient = db.query(Patient).filter(Patient.id == patient_id).first()
        if patient is None:
            return False

        db.delete(patient)
        if commit:
            db.commit()
        else:
            db.flush()
        return True
