"""Appointment repository - Database access for the appointment ledger"""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...models import Doctor, User
from ...models_appointment import Appointment, EmergencySession


class AppointmentRepository:
    """Repository for appointment and emergency session queries"""

    @staticmethod
    def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
        return db.query(Appointment).filter(Appointment.id == appointment_id).first()

    @staticmethod
    def get_user(db: Session, user_id: int) -> Optional[User]:
        return db.query(User).filter(User.id == user_id).first()

    @staticmethod
    def get_doctor(db: Session, doctor_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.id == doctor_id).first()

    @staticmethod
    def get_doctor_by_user(db: Session, user_id: int) -> Optional[Doctor]:
        return db.query(Doctor).filter(Doctor.user_id == user_id).first()

    @staticmethod
    def create_appointment(db: Session, **kwargs) -> Appointment:
        appointment = Appointment(**kwargs)
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    @staticmethod
    def conditional_update(db: Session, appointment_id: int, expected: dict, values: dict) -> int:
        """
        UPDATE appointments SET values WHERE id = :id AND <column> = <expected value>...
        A column mapped to a list/set matches any of its values.
        Returns the number of rows updated (0 when another writer got there first).
        """
        query = db.query(Appointment).filter(Appointment.id == appointment_id)
        for column, value in expected.items():
            attr = getattr(Appointment, column)
            if isinstance(value, (list, set, tuple)):
                query = query.filter(attr.in_(list(value)))
            else:
                query = query.filter(attr == value)
        values = {**values, "updated_at": datetime.utcnow()}
        return query.update(values, synchronize_session=False)

    @staticmethod
    def list_for_patient(db: Session, patient_id: int, limit: int = 50) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.patient_id == patient_id)
            .order_by(Appointment.scheduled_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def list_for_doctor(db: Session, doctor_id: int, limit: int = 50) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.doctor_id == doctor_id)
            .order_by(Appointment.scheduled_at.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_by_statuses(db: Session, status: str, payment_status: str, limit: int = 100) -> list[Appointment]:
        return (
            db.query(Appointment)
            .filter(Appointment.status == status, Appointment.payment_status == payment_status)
            .order_by(Appointment.id)
            .limit(limit)
            .all()
        )

    @staticmethod
    def get_stale(db: Session, statuses: list[str], cutoff: datetime) -> list[Appointment]:
        """Unstarted consultations scheduled before the cutoff"""
        return (
            db.query(Appointment)
            .filter(Appointment.status.in_(statuses), Appointment.scheduled_at < cutoff)
            .order_by(Appointment.scheduled_at)
            .all()
        )

    # Emergency sessions

    @staticmethod
    def create_session(db: Session, **kwargs) -> EmergencySession:
        session = EmergencySession(**kwargs)
        db.add(session)
        db.commit()
        db.refresh(session)
        return session

    @staticmethod
    def get_session(db: Session, appointment_id: int) -> Optional[EmergencySession]:
        return db.query(EmergencySession).filter(EmergencySession.appointment_id == appointment_id).first()

    @staticmethod
    def list_waiting_sessions(db: Session, doctor_id: int) -> list[EmergencySession]:
        return (
            db.query(EmergencySession)
            .filter(EmergencySession.doctor_id == doctor_id, EmergencySession.status == "waiting")
            .order_by(EmergencySession.created_at)
            .all()
        )

    @staticmethod
    def transition_session(db: Session, session_id: int, expected: str, values: dict) -> int:
        return (
            db.query(EmergencySession)
            .filter(EmergencySession.id == session_id, EmergencySession.status == expected)
            .update(values, synchronize_session=False)
        )
