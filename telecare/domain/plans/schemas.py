"""Plan catalog schemas - Pydantic models for plan lookups"""

from typing import Literal, Optional, Union

from pydantic import BaseModel, field_validator

UNLIMITED = "unlimited"


class PlanInfo(BaseModel):
    """Settlement-relevant view of a subscription plan"""

    name: str
    display_name: str
    price: int = 0  # Cents
    emergency_quota: Optional[int] = None  # None means unlimited
    specialist_discount_pct: int = 0

    @field_validator("emergency_quota")
    @classmethod
    def validate_quota(cls, v: Optional[int]) -> Optional[int]:
        if v is not None and v < 0:
            raise ValueError("emergency_quota cannot be negative")
        return v

    @field_validator("specialist_discount_pct")
    @classmethod
    def validate_discount(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("specialist_discount_pct must be between 0 and 100")
        return v

    @property
    def has_unlimited_emergencies(self) -> bool:
        return self.emergency_quota is None


class PlanResponse(BaseModel):
    name: str
    display_name: str
    price: int
    emergency_quota: Union[Literal["unlimited"], int]
    specialist_discount_pct: int


class PriceQuoteResponse(BaseModel):
    plan: str
    base_price: int
    discount_percentage: int
    final_price: int
