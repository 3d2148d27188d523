"""
Doctor earnings - amounts owed per completed consultation

Regular consultations pay the doctor's fee scaled by the patient's plan tier
(subscribers get discounted consultations and the doctor absorbs part of the
discount). Emergency consultations pay a flat fee once the call lasted longer
than the minimum billable duration.
"""

import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import EMERGENCY_DOCTOR_FEE, EMERGENCY_MIN_BILLABLE_MINUTES
from ...errors import AppointmentNotFound, InvalidAppointmentState
from ...models_appointment import Appointment
from ...models_earnings import DoctorEarning
from ..appointments.repository import AppointmentRepository
from ..appointments.state import AppointmentStatus
from ..plans.catalog import base_plan_name
from .repository import EarningsRepository

logger = logging.getLogger(__name__)

# Share of the consultation fee paid to the doctor, by patient plan tier
TIER_MULTIPLIERS = {
    "basic": Decimal("0.7"),
    "premium": Decimal("0.5"),
    "ultra": Decimal("0.5"),
}


def consultation_earning(fee: Optional[int], patient_plan: Optional[str]) -> int:
    """Doctor's share of a regular consultation fee, rounded half-up to a cent"""
    if not fee:
        return 0
    multiplier = TIER_MULTIPLIERS.get(base_plan_name(patient_plan), Decimal("1"))
    return int((Decimal(fee) * multiplier).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def emergency_earning(duration_minutes: Optional[int]) -> int:
    if duration_minutes and duration_minutes > EMERGENCY_MIN_BILLABLE_MINUTES:
        return EMERGENCY_DOCTOR_FEE
    return 0


class EarningsService:
    """Computes and reports doctor earnings lines"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = EarningsRepository()
        self.appointments = AppointmentRepository()

    def calculate_amount(self, appointment: Appointment) -> int:
        if appointment.is_emergency:
            return emergency_earning(appointment.duration)
        fee = appointment.doctor.consultation_fee if appointment.doctor else None
        return consultation_earning(fee, appointment.patient.plan if appointment.patient else None)

    def compute_earnings(self, appointment_id: int) -> int:
        """
        Create the earnings line of a completed consultation and return its amount.
        Recomputing returns the existing line's amount; lines are never duplicated.
        """
        existing = self.repo.get_by_appointment(self.db, appointment_id)
        if existing:
            return existing.amount

        appointment = self.appointments.get_appointment(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
        if appointment.status != AppointmentStatus.COMPLETED.value:
            raise InvalidAppointmentState(
                f"Earnings require a completed consultation, appointment {appointment_id} is {appointment.status}",
                appointment_id=appointment_id,
            )
        if appointment.doctor_id is None:
            raise InvalidAppointmentState(
                f"Appointment {appointment_id} has no assigned doctor", appointment_id=appointment_id
            )

        amount = self.calculate_amount(appointment)
        if amount <= 0:
            logger.info(f"ℹ️ Appointment {appointment_id} is not billable for the doctor, no earnings line")
            return 0

        kind = "Emergency consultation" if appointment.is_emergency else "Consultation"
        line = DoctorEarning(
            doctor_id=appointment.doctor_id,
            appointment_id=appointment_id,
            amount=amount,
            status="pending",
            is_emergency=appointment.is_emergency,
            description=f"{kind} #{appointment_id} on {appointment.scheduled_at:%Y-%m-%d}",
        )
        self.db.add(line)
        try:
            self.db.commit()
        except IntegrityError:
            # Concurrent computation inserted the line first
            self.db.rollback()
            return self.repo.get_by_appointment(self.db, appointment_id).amount

        logger.info(f"💰 Earnings line for doctor {appointment.doctor_id}: {amount} (appointment {appointment_id})")
        return amount

    def monthly_report(self, doctor_id: int, start: datetime, end: datetime) -> dict:
        """Earnings summary for lines created in [start, end)"""
        pending = self.repo.sum_amount(self.db, doctor_id, start, end, status="pending")
        paid = self.repo.sum_amount(self.db, doctor_id, start, end, status="paid")
        emergency_count = self.repo.count_lines(self.db, doctor_id, start, end, is_emergency=True)
        regular_count = self.repo.count_lines(self.db, doctor_id, start, end, is_emergency=False)
        return {
            "doctor_id": doctor_id,
            "period_start": start,
            "period_end": end,
            "pending_amount": pending,
            "paid_amount": paid,
            "total_amount": pending + paid,
            "emergency_consultations": emergency_count,
            "regular_consultations": regular_count,
            "total_consultations": emergency_count + regular_count,
        }

    def list_earnings(self, doctor_id: int, status: Optional[str] = None) -> list[DoctorEarning]:
        return self.repo.list_for_doctor(self.db, doctor_id, status)

    def pending_earnings_preview(self, doctor_id: int) -> dict:
        """Projected earnings of completed consultations not yet turned into lines"""
        items = []
        for appointment in self.repo.get_unsettled_appointments(self.db, doctor_id):
            amount = self.calculate_amount(appointment)
            if amount > 0:
                items.append(
                    {
                        "appointment_id": appointment.id,
                        "scheduled_at": appointment.scheduled_at,
                        "is_emergency": appointment.is_emergency,
                        "amount": amount,
                    }
                )
        return {
            "doctor_id": doctor_id,
            "appointments": items,
            "total_amount": sum(item["amount"] for item in items),
        }

    def mark_paid(self, doctor_id: int, earning_ids: list[int]) -> int:
        """Record a payout of pending lines. Returns number of lines marked paid."""
        updated = self.repo.mark_paid(self.db, doctor_id, earning_ids, datetime.utcnow())
        self.db.commit()
        logger.info(f"✅ {updated} earnings lines of doctor {doctor_id} marked as paid")
        return updated
