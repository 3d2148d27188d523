"""Quota repository - Database operations for emergency consultation quotas"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import EmergencyQuota, QuotaConsumption, User


class QuotaRepository:
    """Repository for quota entries and per-appointment consumption markers"""

    @staticmethod
    def get_patient(db: Session, patient_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == patient_id).first()

    @staticmethod
    def get_entry(db: Session, patient_id: int) -> Optional[EmergencyQuota]:
        return db.query(EmergencyQuota).filter(EmergencyQuota.patient_id == patient_id).first()

    @staticmethod
    def get_consumption(db: Session, appointment_id: int) -> Optional[QuotaConsumption]:
        return (
            db.query(QuotaConsumption)
            .filter(QuotaConsumption.appointment_id == appointment_id)
            .first()
        )

    @staticmethod
    def count_consumptions(db: Session, patient_id: int, cycle_start: datetime) -> int:
        return (
            db.query(QuotaConsumption)
            .filter(
                QuotaConsumption.patient_id == patient_id,
                QuotaConsumption.cycle_start == cycle_start,
            )
            .count()
        )

    @staticmethod
    def decrement_if_positive(db: Session, entry_id: int) -> int:
        """Conditional decrement; returns affected rows (0 when already exhausted)"""
        return (
            db.query(EmergencyQuota)
            .filter(EmergencyQuota.id == entry_id, EmergencyQuota.remaining > 0)
            .update(
                {EmergencyQuota.remaining: EmergencyQuota.remaining - 1},
                synchronize_session=False,
            )
        )

    @staticmethod
    def get_expired_entries(db: Session, now: datetime) -> list[EmergencyQuota]:
        return db.query(EmergencyQuota).filter(EmergencyQuota.cycle_end <= now).all()
