"""Appointment router - FastAPI endpoints for local appointment edits"""

import logging

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from ...config import SyncSettings
from ...database import get_db
from ...routes.dependencies import get_settings, parse_date_param, request_queue_drain
from .schemas import AppointmentCreate, AppointmentResponse, AppointmentUpdate
from .service import AppointmentService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/appointments", tags=["Appointments"])


def get_appointment_service(
    db: Session = Depends(get_db), settings: SyncSettings = Depends(get_settings)
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, settings)


@router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    start: str = Query(..., description="First day, YYYY-MM-DD"),
    end: str = Query(..., description="Last day, YYYY-MM-DD"),
    service: AppointmentService = Depends(get_appointment_service),
):
    appointments = service.repo.by_date_range(
        service.db, parse_date_param(start), parse_date_param(end)
    )
    return [AppointmentResponse.from_model(a) for a in appointments]


@router.post("", response_model=AppointmentResponse)
async def create_appointment(
    data: AppointmentCreate,
    request: Request,
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.create_appointment(data)
    request_queue_drain(request)
    return AppointmentResponse.from_model(appointment)


@router.patch("/{appointment_id}", response_model=AppointmentResponse)
async def update_appointment(
    appointment_id: str,
    data: AppointmentUpdate,
    request: Request,
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.update_appointment(appointment_id, data)
    request_queue_drain(request)
    return AppointmentResponse.from_model(appointment)


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: str,
    request: Request,
    service: AppointmentService = Depends(get_appointment_service),
):
    appointment = service.mark_complete(appointment_id)
    request_queue_drain(request)
    return AppointmentResponse.from_model(appointment)


@router.delete("/{appointment_id}")
async def delete_appointment(
    appointment_id: str,
    request: Request,
    service: AppointmentService = Depends(get_appointment_service),
):
    service.delete_appointment(appointment_id)
    request_queue_drain(request)
    return {"message": "Appointment deleted successfully"}
