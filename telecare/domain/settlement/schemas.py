"""Settlement schemas - Pydantic models for payment settlement endpoints"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class PreauthorizationRequest(BaseModel):
    amount: Optional[int] = Field(None, gt=0)  # Cents; quoted by the server when omitted
    doctor_id: Optional[int] = None
    is_emergency: Optional[bool] = None


class SettlementStateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    payment_status: str
    payment_amount: Optional[int] = None
    payment_authorization_id: Optional[str] = None
    payment_captured_at: Optional[datetime] = None


class PreauthorizationResponse(BaseModel):
    appointment: SettlementStateResponse
    chargeable: bool
    client_secret: Optional[str] = None
