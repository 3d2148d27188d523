"""Quota schemas - Pydantic models for quota endpoints"""

from datetime import datetime
from typing import Literal, Optional, Union

from pydantic import BaseModel


class QuotaUsageResponse(BaseModel):
    plan: str
    limit: Union[Literal["unlimited"], int]
    used: int
    remaining: Union[Literal["unlimited"], int]
    cycle_start: datetime
    reset_date: datetime


class QuotaResetRequest(BaseModel):
    """Subscription activation / renewal / plan change event"""

    plan: Optional[str] = None  # Defaults to the patient's current plan
