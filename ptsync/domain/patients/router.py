"""Patient router - FastAPI endpoints for local patient edits"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...database import get_db
from ...routes.dependencies import get_settings, request_queue_drain
from .schemas import PatientCreate, PatientResponse, PatientStatus, PatientUpdate
from .service import PatientService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/patients", tags=["Patients"])


def get_patient_service(
    db: Session = Depends(get_db), settings: SyncSettings = Depends(get_settings)
) -> PatientService:
    """Dependency injection for PatientService"""
    return PatientService(db, settings)


def _response(service: PatientService, patient) -> PatientResponse:
    return PatientResponse.from_record(service.repo.to_record(patient))


@router.get("", response_model=list[PatientResponse])
async def list_patients(
    status: Optional[PatientStatus] = Query(None, description="Filter patients by status"),
    service: PatientService = Depends(get_patient_service),
):
    if status:
        patients = service.repo.by_status(service.db, status.value)
    else:
        patients = service.repo.list_all(service.db)
    return [_response(service, p) for p in patients]


@router.get("/{patient_id}", response_model=PatientResponse)
async def get_patient(patient_id: str, service: PatientService = Depends(get_patient_service)):
    return _response(service, service.get_patient(patient_id))


@router.post("", response_model=PatientResponse)
async def create_patient(
    data: PatientCreate,
    request: Request,
    service: PatientService = Depends(get_patient_service),
):
    patient = service.create_patient(data)
    request_queue_drain(request)
    return _response(service, patient)


@router.patch("/{patient_id}", response_model=PatientResponse)
async def update_patient(
    patient_id: str,
    data: PatientUpdate,
    request: Request,
    service: PatientService = Depends(get_patient_service),
):
    patient = service.update_patient(patient_id, data)
    request_queue_drain(request)
    return _response(service, patient)


@router.post("/{patient_id}/discharge", response_model=PatientResponse)
async def discharge_patient(
    patient_id: str, request: Request, service: PatientService = Depends(get_patient_service)
):
    patient = service.discharge(patient_id)
    request_queue_drain(request)
    return _response(service, patient)


@router.post("/{patient_id}/for-other-pt", response_model=PatientResponse)
async def mark_for_other_pt(
    patient_id: str, request: Request, service: PatientService = Depends(get_patient_service)
):
    patient = service.mark_for_other_pt(patient_id)
    request_queue_drain(request)
    return _response(service, patient)


@router.post("/{patient_id}/reactivate", response_model=PatientResponse)
async def reactivate_patient(
    patient_id: str, request: Request, service: PatientService = Depends(get_patient_service)
):
    patient = service.reactivate(patient_id)
    request_queue_drain(request)
    return _response(service, patient)


@router.delete("/{patient_id}")
async def delete_patient(
    patient_id: str, request: Request, service: PatientService = Depends(get_patient_service)
):
    service.delete_patient(patient_id)
    request_queue_drain(request)
    return {"message": "Patient deleted successfully"}
