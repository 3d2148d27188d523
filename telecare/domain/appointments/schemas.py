"""Appointment schemas - Pydantic models for ledger endpoints"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .state import AppointmentType


class AppointmentCreate(BaseModel):
    doctor_id: int
    scheduled_at: datetime
    duration: int = Field(30, gt=0, le=240)  # Minutes
    type: str = AppointmentType.TELEMEDICINE.value
    notes: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        allowed = {t.value for t in AppointmentType}
        if v not in allowed:
            raise ValueError(f"type must be one of {sorted(allowed)}")
        return v


class AppointmentCancelRequest(BaseModel):
    reason: Optional[str] = None


class AppointmentCompleteRequest(BaseModel):
    notes: Optional[str] = None


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    patient_id: int
    doctor_id: Optional[int] = None
    scheduled_at: datetime
    duration: int
    type: str
    status: str
    is_emergency: bool
    payment_status: str
    payment_amount: Optional[int] = None
    payment_captured_at: Optional[datetime] = None
    telemed_link: Optional[str] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None


class EmergencyStartRequest(BaseModel):
    doctor_id: Optional[int] = None  # Any available doctor when omitted


class EmergencySessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    appointment_id: int
    doctor_id: int
    patient_id: int
    room_name: str
    room_url: Optional[str] = None
    status: str
    created_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None


class EmergencyStartResponse(BaseModel):
    appointment: AppointmentResponse
    session: EmergencySessionResponse
    chargeable: bool
    client_secret: Optional[str] = None


class EmergencyEndRequest(BaseModel):
    notes: Optional[str] = None
    duration: Optional[int] = Field(None, ge=0)  # Actual minutes; measured from acceptance when omitted
