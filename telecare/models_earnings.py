"""
Doctor earnings lines for payout scheduling
"""

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base


class DoctorEarning(Base):
    """Amount owed to a doctor for one completed consultation"""

    __tablename__ = "doctor_earnings"

    id = Column(Integer, primary_key=True, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id", ondelete="CASCADE"), nullable=False, index=True)
    # Unique: a consultation produces at most one earnings line
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="SET NULL"), unique=True, nullable=True
    )
    amount = Column(Integer, nullable=False)  # Cents
    status = Column(String(20), default="pending", nullable=False)  # pending, paid
    is_emergency = Column(Boolean, default=False, nullable=False)
    description = Column(String(255), nullable=False)
    paid_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, server_default=func.now(), index=True)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor = relationship("Doctor")
