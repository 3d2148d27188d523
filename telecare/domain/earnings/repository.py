"""Earnings repository - Database operations for doctor earnings lines"""

from datetime import datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from ...models_appointment import Appointment
from ...models_earnings import DoctorEarning


class EarningsRepository:
    @staticmethod
    def get_by_appointment(db: Session, appointment_id: int) -> Optional[DoctorEarning]:
        return db.query(DoctorEarning).filter(DoctorEarning.appointment_id == appointment_id).first()

    @staticmethod
    def list_for_doctor(db: Session, doctor_id: int, status: Optional[str] = None) -> list[DoctorEarning]:
        query = db.query(DoctorEarning).filter(DoctorEarning.doctor_id == doctor_id)
        if status:
            query = query.filter(DoctorEarning.status == status)
        return query.order_by(DoctorEarning.created_at.desc(), DoctorEarning.id.desc()).all()

    @staticmethod
    def sum_amount(db: Session, doctor_id: int, start: datetime, end: datetime, status: Optional[str] = None) -> int:
        query = db.query(func.sum(DoctorEarning.amount)).filter(
            DoctorEarning.doctor_id == doctor_id,
            DoctorEarning.created_at >= start,
            DoctorEarning.created_at < end,
        )
        if status:
            query = query.filter(DoctorEarning.status == status)
        return query.scalar() or 0

    @staticmethod
    def count_lines(db: Session, doctor_id: int, start: datetime, end: datetime, is_emergency: bool) -> int:
        return (
            db.query(DoctorEarning)
            .filter(
                DoctorEarning.doctor_id == doctor_id,
                DoctorEarning.created_at >= start,
                DoctorEarning.created_at < end,
                DoctorEarning.is_emergency == is_emergency,
            )
            .count()
        )

    @staticmethod
    def get_unsettled_appointments(db: Session, doctor_id: int) -> list[Appointment]:
        """Completed consultations of the doctor that have no earnings line yet"""
        return (
            db.query(Appointment)
            .outerjoin(DoctorEarning, DoctorEarning.appointment_id == Appointment.id)
            .filter(
                Appointment.doctor_id == doctor_id,
                Appointment.status == "completed",
                DoctorEarning.id.is_(None),
            )
            .order_by(Appointment.scheduled_at)
            .all()
        )

    @staticmethod
    def mark_paid(db: Session, doctor_id: int, earning_ids: list[int], paid_at: datetime) -> int:
        return (
            db.query(DoctorEarning)
            .filter(
                DoctorEarning.doctor_id == doctor_id,
                DoctorEarning.id.in_(earning_ids),
                DoctorEarning.status == "pending",
            )
            .update({"status": "paid", "paid_at": paid_at}, synchronize_session=False)
        )
