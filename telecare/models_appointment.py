"""
Appointment ledger and emergency session models
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class Appointment(Base):
    """Authoritative record of a consultation and its payment settlement"""

    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    doctor_id = Column(
        Integer, ForeignKey("doctors.id", ondelete="SET NULL"), nullable=True, index=True
    )  # Null until a doctor is assigned
    scheduled_at = Column(DateTime, nullable=False)
    duration = Column(Integer, nullable=False)  # Minutes
    type = Column(String(20), nullable=False, default="telemedicine")  # telemedicine, emergency
    status = Column(
        String(20), nullable=False, default="scheduled", index=True
    )  # scheduled, confirmed, in_progress, completed, cancelled
    is_emergency = Column(Boolean, default=False, nullable=False)

    # Settlement
    payment_status = Column(
        String(20), nullable=False, default="pending", index=True
    )  # pending, authorized, included_in_plan, completed, cancelled
    payment_authorization_id = Column(String(255), nullable=True)  # Gateway reference
    payment_amount = Column(Integer, nullable=True)  # Cents
    payment_captured_at = Column(DateTime, nullable=True)

    # Video room
    telemed_room_name = Column(String(255), nullable=True)
    telemed_link = Column(String(500), nullable=True)

    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("User", foreign_keys=[patient_id])
    doctor = relationship("Doctor")
    emergency_session = relationship("EmergencySession", back_populates="appointment", uselist=False)


class EmergencySession(Base):
    """Emergency call waiting for (or attended by) a doctor, visible across instances"""

    __tablename__ = "emergency_sessions"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    room_name = Column(String(255), nullable=False)
    room_url = Column(String(500), nullable=True)
    status = Column(String(20), default="waiting", nullable=False, index=True)  # waiting, active, ended
    created_at = Column(DateTime, server_default=func.now())
    accepted_at = Column(DateTime, nullable=True)
    ended_at = Column(DateTime, nullable=True)

    appointment = relationship("Appointment", back_populates="emergency_session")
