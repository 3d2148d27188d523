"""Appointment router - Consultation ledger and emergency call endpoints"""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, User
from ...services.payment_gateway import PaymentGateway, get_payment_gateway
from ...services.video_service import VideoRoomService, get_video_service
from .schemas import (
    AppointmentCancelRequest,
    AppointmentCompleteRequest,
    AppointmentCreate,
    AppointmentResponse,
    EmergencyEndRequest,
    EmergencySessionResponse,
    EmergencyStartRequest,
    EmergencyStartResponse,
)
from .service import AppointmentService

router = APIRouter(prefix="/appointments", tags=["Appointments"])
emergency_router = APIRouter(prefix="/emergency", tags=["Emergency"])


def get_appointment_service(
    db: Session = Depends(get_db),
    gateway: PaymentGateway = Depends(get_payment_gateway),
    video: VideoRoomService = Depends(get_video_service),
) -> AppointmentService:
    """Dependency injection for AppointmentService"""
    return AppointmentService(db, gateway, video)


@router.post("", response_model=AppointmentResponse, status_code=201)
async def book_appointment(
    body: AppointmentCreate,
    patient: User = Depends(require_roles(ROLE_PATIENT)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Book a consultation; payment is settled separately through preauthorization"""
    return service.book_appointment(
        patient, body.doctor_id, body.scheduled_at, body.duration, body.type, body.notes
    )


@router.get("", response_model=list[AppointmentResponse])
async def list_appointments(
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.list_appointments(current_user)


@router.get("/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.get_appointment(appointment_id, current_user)


@router.post("/{appointment_id}/confirm", response_model=AppointmentResponse)
async def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    service: AppointmentService = Depends(get_appointment_service),
):
    return await service.confirm(appointment_id, current_user)


@router.post("/{appointment_id}/start", response_model=AppointmentResponse)
async def start_appointment(
    appointment_id: int,
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.start(appointment_id, current_user)


@router.post("/{appointment_id}/complete", response_model=AppointmentResponse)
async def complete_appointment(
    appointment_id: int,
    body: AppointmentCompleteRequest,
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.complete(appointment_id, current_user, body.notes)


@router.post("/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    body: AppointmentCancelRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Cancel the consultation, releasing any payment hold"""
    return await service.cancel(appointment_id, current_user, body.reason)


@emergency_router.post("/start", response_model=EmergencyStartResponse, status_code=201)
async def start_emergency(
    body: EmergencyStartRequest,
    patient: User = Depends(require_roles(ROLE_PATIENT)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Start an emergency call with an available doctor"""
    return await service.start_emergency_consultation(patient, body.doctor_id)


@emergency_router.get("/pending", response_model=list[EmergencySessionResponse])
async def list_pending_emergencies(
    doctor: User = Depends(require_roles(ROLE_DOCTOR)),
    service: AppointmentService = Depends(get_appointment_service),
):
    """Emergency calls waiting for the current doctor"""
    return service.pending_emergencies(doctor)


@emergency_router.post("/{appointment_id}/accept", response_model=EmergencySessionResponse)
async def accept_emergency(
    appointment_id: int,
    current_user: User = Depends(require_roles(ROLE_DOCTOR, ROLE_ADMIN)),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.accept_emergency(appointment_id, current_user)


@emergency_router.post("/{appointment_id}/end", response_model=AppointmentResponse)
async def end_emergency(
    appointment_id: int,
    body: EmergencyEndRequest,
    current_user: User = Depends(get_current_user),
    service: AppointmentService = Depends(get_appointment_service),
):
    return service.end_emergency(appointment_id, current_user, body.notes, body.duration)
