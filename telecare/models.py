from sqlalchemy import Boolean, Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from .database import Base

ROLE_PATIENT = "patient"
ROLE_DOCTOR = "doctor"
ROLE_ADMIN = "admin"


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    full_name = Column(String(255), nullable=True)
    role = Column(String(20), default=ROLE_PATIENT, nullable=False)  # patient, doctor, admin
    plan = Column(String(50), nullable=True)  # free, basic, premium, ultra (+ _family variants)
    subscription_status = Column(
        String(50), default="active", nullable=True
    )  # active, past_due, cancelled
    subscription_start_date = Column(
        DateTime, nullable=True
    )  # When subscription started (anchors the quota cycle)
    # Gateway customer reference; a saved payment method is required for paid consultations
    payment_customer_id = Column(String(255), nullable=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    doctor_profile = relationship("Doctor", back_populates="user", uselist=False)
    emergency_quota = relationship("EmergencyQuota", back_populates="patient", uselist=False)


class Doctor(Base):
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    specialization = Column(String(255), nullable=False)
    consultation_fee = Column(Integer, nullable=True)  # Base fee in cents
    available_for_emergency = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, approved, suspended
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    user = relationship("User", back_populates="doctor_profile")

    @property
    def full_name(self):
        return self.user.full_name if self.user else None


class SubscriptionPlan(Base):
    """Plan catalog row. Seeded at startup, read-only for settlement."""

    __tablename__ = "subscription_plans"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(50), unique=True, nullable=False)
    display_name = Column(String(100), nullable=False)
    price = Column(Integer, nullable=False)  # Monthly price in cents
    emergency_consultations = Column(String(20), nullable=False)  # "unlimited" or a count
    specialist_discount = Column(Integer, default=0, nullable=False)  # Percentage
    features = Column(Text, nullable=True)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class EmergencyQuota(Base):
    """Remaining emergency consultations for a patient's current quota cycle"""

    __tablename__ = "emergency_quotas"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    plan_name = Column(String(50), nullable=False)
    remaining = Column(Integer, nullable=True)  # None means unlimited
    cycle_start = Column(DateTime, nullable=False)
    cycle_end = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    patient = relationship("User", back_populates="emergency_quota")


class QuotaConsumption(Base):
    """Marker row: the appointment already consumed one emergency consultation"""

    __tablename__ = "quota_consumptions"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(
        Integer, ForeignKey("appointments.id", ondelete="CASCADE"), unique=True, nullable=False
    )
    patient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    plan_name = Column(String(50), nullable=False)
    cycle_start = Column(DateTime, nullable=False)
    created_at = Column(DateTime, server_default=func.now())
