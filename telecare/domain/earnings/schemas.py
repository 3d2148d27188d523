"""Earnings schemas - Pydantic models for doctor earnings endpoints"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator


class EarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    appointment_id: Optional[int]
    amount: int
    status: str
    is_emergency: bool
    description: str
    paid_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class ComputeEarningsResponse(BaseModel):
    appointment_id: int
    amount: int


class MonthlyReportResponse(BaseModel):
    doctor_id: int
    period_start: datetime
    period_end: datetime
    pending_amount: int
    paid_amount: int
    total_amount: int
    emergency_consultations: int
    regular_consultations: int
    total_consultations: int


class PendingEarningItem(BaseModel):
    appointment_id: int
    scheduled_at: datetime
    is_emergency: bool
    amount: int


class PendingEarningsResponse(BaseModel):
    doctor_id: int
    appointments: list[PendingEarningItem]
    total_amount: int


class MarkPaidRequest(BaseModel):
    earning_ids: list[int]

    @field_validator("earning_ids")
    @classmethod
    def validate_ids(cls, v: list[int]) -> list[int]:
        if not v:
            raise ValueError("At least one earnings line is required")
        return v


class MarkPaidResponse(BaseModel):
    updated: int
