"""
Emergency consultation quota tracking per patient and billing cycle.

Quota cycles are 30 days long and anchored on the subscription start date,
not on calendar months. A consultation consumes quota at most once: the
``quota_consumptions`` marker (unique per appointment) is written in the
same transaction as the conditional decrement.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...config import QUOTA_CYCLE_DAYS
from ...errors import QuotaExceededButNotChargeable
from ...models import EmergencyQuota, QuotaConsumption, User
from ..plans.catalog import PlanCatalog
from .repository import QuotaRepository

logger = logging.getLogger(__name__)


def calculate_cycle(anchor: datetime, current_time: datetime) -> tuple[datetime, datetime]:
    """
    Current quota cycle (start, end) for a subscription anchored at `anchor`.
    A new cycle begins every QUOTA_CYCLE_DAYS days from the anchor.
    """
    if current_time < anchor:
        return anchor, anchor + timedelta(days=QUOTA_CYCLE_DAYS)
    days_since_start = (current_time - anchor).days
    cycles_passed = days_since_start // QUOTA_CYCLE_DAYS
    cycle_start = anchor + timedelta(days=cycles_passed * QUOTA_CYCLE_DAYS)
    return cycle_start, cycle_start + timedelta(days=QUOTA_CYCLE_DAYS)


class QuotaTracker:
    """Reads and consumes emergency consultation quota"""

    def __init__(self, db: Session):
        self.db = db
        self.repo = QuotaRepository()
        self.catalog = PlanCatalog(db)

    def _get_patient(self, patient_id: int) -> User:
        patient = self.repo.get_patient(self.db, patient_id)
        if not patient:
            raise ValueError(f"Patient {patient_id} not found")
        return patient

    def get_entry(self, patient: User) -> EmergencyQuota:
        """Current quota entry for the patient, created or rolled over when needed"""
        now = datetime.utcnow()
        entry = self.repo.get_entry(self.db, patient.id)

        if entry is None:
            return self._create_entry(patient, now)

        if now >= entry.cycle_end:
            logger.info(f"🔄 Quota cycle ended for patient {patient.id}, starting a new one")
            return self.reset_quota(patient.id, entry.plan_name)

        return entry

    def _create_entry(self, patient: User, now: datetime) -> EmergencyQuota:
        plan = self.catalog.get_plan(patient.plan)
        anchor = patient.subscription_start_date or patient.created_at or now
        cycle_start, cycle_end = calculate_cycle(anchor, now)
        entry = EmergencyQuota(
            patient_id=patient.id,
            plan_name=plan.name,
            remaining=plan.emergency_quota,
            cycle_start=cycle_start,
            cycle_end=cycle_end,
        )
        self.db.add(entry)
        try:
            self.db.commit()
        except IntegrityError:
            # Another request created the entry first
            self.db.rollback()
            return self.repo.get_entry(self.db, patient.id)
        self.db.refresh(entry)
        logger.info(
            f"✅ Quota entry created for patient {patient.id}: plan={plan.name}, "
            f"remaining={'unlimited' if entry.remaining is None else entry.remaining}"
        )
        return entry

    def has_remaining_quota(self, patient_id: int) -> Optional[int]:
        """Remaining emergency consultations this cycle. None means unlimited."""
        entry = self.get_entry(self._get_patient(patient_id))
        return entry.remaining

    def has_consumed(self, appointment_id: int) -> bool:
        return self.repo.get_consumption(self.db, appointment_id) is not None

    def decrement_once(self, patient_id: int, appointment_id: int) -> bool:
        """
        Consume one emergency consultation for this appointment.

        Returns False (no-op) when the appointment already consumed quota.
        Raises QuotaExceededButNotChargeable if the entry is already at zero;
        callers must route exhausted quotas to the chargeable path instead.
        """
        entry = self.get_entry(self._get_patient(patient_id))

        self.db.add(
            QuotaConsumption(
                appointment_id=appointment_id,
                patient_id=patient_id,
                plan_name=entry.plan_name,
                cycle_start=entry.cycle_start,
            )
        )
        try:
            self.db.flush()
        except IntegrityError:
            self.db.rollback()
            logger.info(f"ℹ️ Appointment {appointment_id} already consumed quota, skipping decrement")
            return False

        if entry.remaining is not None:
            if self.repo.decrement_if_positive(self.db, entry.id) == 0:
                self.db.rollback()
                logger.error(
                    f"❌ Quota decrement refused for patient {patient_id} (appointment {appointment_id}): "
                    f"no emergency consultations left"
                )
                raise QuotaExceededButNotChargeable(
                    f"Patient {patient_id} has no emergency consultations left",
                    appointment_id=appointment_id,
                )

        self.db.commit()
        logger.info(f"✅ Emergency quota consumed for patient {patient_id} by appointment {appointment_id}")
        return True

    def reset_quota(self, patient_id: int, plan_name: Optional[str] = None) -> EmergencyQuota:
        """
        Start a fresh quota cycle. Called on subscription activation, renewal
        or plan change, and when a cycle has run out.
        """
        patient = self._get_patient(patient_id)
        plan = self.catalog.get_plan(plan_name or patient.plan)
        now = datetime.utcnow()
        anchor = patient.subscription_start_date or patient.created_at or now
        cycle_start, cycle_end = calculate_cycle(anchor, now)

        entry = self.repo.get_entry(self.db, patient_id)
        if entry is None:
            entry = EmergencyQuota(patient_id=patient_id)
            self.db.add(entry)
        entry.plan_name = plan.name
        entry.remaining = plan.emergency_quota
        entry.cycle_start = cycle_start
        entry.cycle_end = cycle_end
        self.db.commit()
        self.db.refresh(entry)
        logger.info(f"🔄 Quota reset for patient {patient_id}: plan={plan.name}, cycle ends {cycle_end}")
        return entry

    def rollover_expired(self) -> int:
        """Reset every entry whose cycle has ended. Returns number of entries reset."""
        now = datetime.utcnow()
        expired = self.repo.get_expired_entries(self.db, now)
        for entry in expired:
            self.reset_quota(entry.patient_id, entry.plan_name)
        return len(expired)

    def get_usage_stats(self, patient: User) -> dict:
        """Quota usage for the current cycle"""
        entry = self.get_entry(patient)
        plan = self.catalog.get_plan(entry.plan_name)
        used = self.repo.count_consumptions(self.db, patient.id, entry.cycle_start)
        return {
            "plan": entry.plan_name,
            "limit": plan.emergency_quota,  # None for unlimited
            "used": used,
            "remaining": entry.remaining,  # None for unlimited
            "cycle_start": entry.cycle_start,
            "reset_date": entry.cycle_end,
        }
