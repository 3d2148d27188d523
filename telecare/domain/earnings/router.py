"""Earnings router - Doctor earnings statements, reports and payouts"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...errors import SettlementPermissionDenied
from ...models import ROLE_ADMIN, ROLE_DOCTOR, Doctor, User
from .schemas import (
    ComputeEarningsResponse,
    EarningResponse,
    MarkPaidRequest,
    MarkPaidResponse,
    MonthlyReportResponse,
    PendingEarningsResponse,
)
from .service import EarningsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/earnings", tags=["Earnings"])


def get_earnings_service(db: Session = Depends(get_db)) -> EarningsService:
    """Dependency injection for EarningsService"""
    return EarningsService(db)


def get_doctor_profile(
    current_user: User = Depends(require_roles(ROLE_DOCTOR)),
    db: Session = Depends(get_db),
) -> Doctor:
    doctor = db.query(Doctor).filter(Doctor.user_id == current_user.id).first()
    if not doctor:
        raise HTTPException(status_code=404, detail="Doctor profile not found")
    return doctor


def month_range(year: int, month: int) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1)
    end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
    return start, end


@router.get("/me", response_model=list[EarningResponse])
async def list_my_earnings(
    status: Optional[str] = Query(None, pattern="^(pending|paid)$"),
    doctor: Doctor = Depends(get_doctor_profile),
    service: EarningsService = Depends(get_earnings_service),
):
    """Earnings statement of the current doctor"""
    return service.list_earnings(doctor.id, status)


@router.get("/me/report", response_model=MonthlyReportResponse)
async def get_my_monthly_report(
    year: Optional[int] = Query(None, ge=2000, le=2100),
    month: Optional[int] = Query(None, ge=1, le=12),
    doctor: Doctor = Depends(get_doctor_profile),
    service: EarningsService = Depends(get_earnings_service),
):
    """Monthly earnings report; defaults to the current month"""
    now = datetime.utcnow()
    start, end = month_range(year or now.year, month or now.month)
    return service.monthly_report(doctor.id, start, end)


@router.get("/me/pending", response_model=PendingEarningsResponse)
async def preview_pending_earnings(
    doctor: Doctor = Depends(get_doctor_profile),
    service: EarningsService = Depends(get_earnings_service),
):
    """Completed consultations whose earnings were not computed yet"""
    return service.pending_earnings_preview(doctor.id)


@router.post("/appointments/{appointment_id}/compute", response_model=ComputeEarningsResponse)
async def compute_appointment_earnings(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    service: EarningsService = Depends(get_earnings_service),
):
    """Compute (or return) the earnings line of a completed consultation"""
    if current_user.role != ROLE_ADMIN:
        appointment = service.appointments.get_appointment(service.db, appointment_id)
        doctor = appointment.doctor if appointment else None
        if not doctor or doctor.user_id != current_user.id:
            raise SettlementPermissionDenied(
                f"User {current_user.id} cannot compute earnings of appointment {appointment_id}",
                appointment_id=appointment_id,
            )
    amount = service.compute_earnings(appointment_id)
    return ComputeEarningsResponse(appointment_id=appointment_id, amount=amount)


@router.post("/doctors/{doctor_id}/payout", response_model=MarkPaidResponse)
async def record_payout(
    doctor_id: int,
    body: MarkPaidRequest,
    admin: User = Depends(require_roles(ROLE_ADMIN)),
    service: EarningsService = Depends(get_earnings_service),
):
    """Mark pending earnings lines of a doctor as paid"""
    updated = service.mark_paid(doctor_id, body.earning_ids)
    logger.info(f"Payout of {updated} lines for doctor {doctor_id} recorded by admin {admin.id}")
    return MarkPaidResponse(updated=updated)
