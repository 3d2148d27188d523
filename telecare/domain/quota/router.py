"""Quota router - Emergency consultation quota endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from ...auth import get_current_user, require_roles
from ...database import get_db
from ...models import ROLE_ADMIN, User
from .schemas import QuotaResetRequest, QuotaUsageResponse
from .tracker import QuotaTracker

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/quota", tags=["Quota"])


def get_quota_tracker(db: Session = Depends(get_db)) -> QuotaTracker:
    """Dependency injection for QuotaTracker"""
    return QuotaTracker(db)


def _usage_response(stats: dict) -> QuotaUsageResponse:
    return QuotaUsageResponse(
        plan=stats["plan"],
        limit="unlimited" if stats["limit"] is None else stats["limit"],
        used=stats["used"],
        remaining="unlimited" if stats["remaining"] is None else stats["remaining"],
        cycle_start=stats["cycle_start"],
        reset_date=stats["reset_date"],
    )


@router.get("/me", response_model=QuotaUsageResponse)
async def get_my_quota(
    current_user: User = Depends(get_current_user),
    tracker: QuotaTracker = Depends(get_quota_tracker),
):
    """Emergency consultation usage for the current cycle"""
    return _usage_response(tracker.get_usage_stats(current_user))


@router.post("/{patient_id}/reset", response_model=QuotaUsageResponse)
async def reset_patient_quota(
    patient_id: int,
    body: QuotaResetRequest,
    admin: User = Depends(require_roles(ROLE_ADMIN)),
    tracker: QuotaTracker = Depends(get_quota_tracker),
):
    """Apply a subscription renewal or plan change to the patient's quota"""
    try:
        tracker.reset_quota(patient_id, body.plan)
    except ValueError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    logger.info(f"Quota for patient {patient_id} reset by admin {admin.id}")
    patient = tracker.repo.get_patient(tracker.db, patient_id)
    return _usage_response(tracker.get_usage_stats(patient))
