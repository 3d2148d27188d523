"""
Appointment ledger - booking, status lifecycle and emergency consultations
"""

import logging
import math
from datetime import datetime, timedelta
from typing import Optional

from fastapi import HTTPException
from sqlalchemy.orm import Session

from ...config import EMERGENCY_CONSULTATION_DURATION, STALE_APPOINTMENT_GRACE_MINUTES
from ...errors import AppointmentNotFound, GatewayError, SettlementError, SettlementPermissionDenied
from ...models import ROLE_ADMIN, ROLE_DOCTOR, Doctor, User
from ...models_appointment import Appointment, EmergencySession
from ...services.notification_service import SettlementEventSink
from ...services.payment_gateway import PaymentGateway
from ...services.video_service import VideoRoomError, VideoRoomService
from ..earnings.service import EarningsService
from ..settlement.service import SettlementService, is_admin, is_assigned_doctor, is_patient
from .repository import AppointmentRepository
from .state import AppointmentStatus, AppointmentType, PaymentStatus, ensure_status_transition

logger = logging.getLogger(__name__)

APPROVED_DOCTOR = "approved"


class AppointmentService:
    """Business logic for the consultation lifecycle"""

    def __init__(self, db: Session, gateway: PaymentGateway, video: VideoRoomService):
        self.db = db
        self.repo = AppointmentRepository()
        self.video = video
        self.settlement = SettlementService(db, gateway)
        self.earnings = EarningsService(db)
        self.events = SettlementEventSink(db)

    # Lookups

    def _get(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
        return appointment

    def _deny(self, actor: User, appointment_id: int, action: str):
        raise SettlementPermissionDenied(
            f"User {actor.id} cannot {action} appointment {appointment_id}", appointment_id=appointment_id
        )

    def _require_doctor_or_admin(self, appointment: Appointment, actor: User, action: str) -> None:
        if not (is_admin(actor) or is_assigned_doctor(appointment, actor)):
            self._deny(actor, appointment.id, action)

    def _require_participant(self, appointment: Appointment, actor: User, action: str) -> None:
        if not (is_admin(actor) or is_patient(appointment, actor) or is_assigned_doctor(appointment, actor)):
            self._deny(actor, appointment.id, action)

    def get_appointment(self, appointment_id: int, actor: User) -> Appointment:
        appointment = self._get(appointment_id)
        self._require_participant(appointment, actor, "view")
        return appointment

    def list_appointments(self, actor: User) -> list[Appointment]:
        if actor.role == ROLE_DOCTOR:
            doctor = self.repo.get_doctor_by_user(self.db, actor.id)
            return self.repo.list_for_doctor(self.db, doctor.id) if doctor else []
        return self.repo.list_for_patient(self.db, actor.id)

    # Status transitions

    def _transition(self, appointment: Appointment, target: AppointmentStatus, **values) -> Appointment:
        """Move the appointment status through a conditional update on the current status"""
        current = appointment.status
        ensure_status_transition(current, target, appointment.id)
        updated = self.repo.conditional_update(
            self.db,
            appointment.id,
            expected={"status": current},
            values={"status": target.value, **values},
        )
        if not updated:
            self.db.rollback()
            self.db.refresh(appointment)
            ensure_status_transition(appointment.status, target, appointment.id)
            raise HTTPException(status_code=409, detail="Consultation was modified concurrently, please retry")
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"🔄 Appointment {appointment.id}: {current} -> {target.value}")
        return appointment

    def book_appointment(
        self,
        patient: User,
        doctor_id: int,
        scheduled_at: datetime,
        duration: int,
        appointment_type: str = AppointmentType.TELEMEDICINE.value,
        notes: Optional[str] = None,
    ) -> Appointment:
        """Create a scheduled consultation with pending payment"""
        if appointment_type == AppointmentType.EMERGENCY.value:
            raise HTTPException(status_code=400, detail="Emergency consultations are started, not booked")
        doctor = self.repo.get_doctor(self.db, doctor_id)
        if not doctor or doctor.status != APPROVED_DOCTOR:
            raise HTTPException(status_code=404, detail="Doctor not found")
        if scheduled_at <= datetime.utcnow():
            raise HTTPException(status_code=400, detail="Consultations must be scheduled in the future")

        appointment = self.repo.create_appointment(
            self.db,
            patient_id=patient.id,
            doctor_id=doctor.id,
            scheduled_at=scheduled_at,
            duration=duration,
            type=appointment_type,
            status=AppointmentStatus.SCHEDULED.value,
            is_emergency=False,
            payment_status=PaymentStatus.PENDING.value,
            notes=notes,
        )
        logger.info(f"✅ Appointment {appointment.id} booked by patient {patient.id} with doctor {doctor.id}")
        self.events.record(
            "APPOINTMENT_BOOKED",
            patient.id,
            appointment.id,
            notify_user_ids=[doctor.user_id],
            title="New consultation booked",
            message=f"New consultation on {scheduled_at:%Y-%m-%d %H:%M}.",
        )
        return appointment

    async def _provision_room(self, appointment: Appointment, room_name: str) -> Optional[str]:
        """Create the video room; a provider outage never blocks the consultation"""
        try:
            return await self.video.create_room(room_name)
        except VideoRoomError as e:
            logger.warning(f"⚠️ Video room for appointment {appointment.id} not created: {e}")
            return None

    async def confirm(self, appointment_id: int, actor: User) -> Appointment:
        appointment = self._get(appointment_id)
        self._require_doctor_or_admin(appointment, actor, "confirm")
        self._transition(appointment, AppointmentStatus.CONFIRMED)

        room_name = f"consultation-{appointment.id}"
        room_url = await self._provision_room(appointment, room_name)
        if room_url:
            appointment.telemed_room_name = room_name
            appointment.telemed_link = room_url
            self.db.commit()
            self.db.refresh(appointment)

        self.events.record(
            "APPOINTMENT_CONFIRMED",
            actor.id,
            appointment.id,
            notify_user_ids=[appointment.patient_id],
            title="Consultation confirmed",
            message="Your consultation was confirmed by the doctor.",
        )
        return appointment

    def start(self, appointment_id: int, actor: User) -> Appointment:
        appointment = self._get(appointment_id)
        self._require_doctor_or_admin(appointment, actor, "start")
        return self._transition(appointment, AppointmentStatus.IN_PROGRESS)

    def complete(self, appointment_id: int, actor: User, notes: Optional[str] = None) -> Appointment:
        """Mark the consultation completed and compute the doctor's earnings"""
        appointment = self._get(appointment_id)
        self._require_doctor_or_admin(appointment, actor, "complete")
        values = {"notes": notes} if notes else {}
        self._transition(appointment, AppointmentStatus.COMPLETED, **values)
        self.earnings.compute_earnings(appointment.id)
        return appointment

    async def cancel(self, appointment_id: int, actor: Optional[User], reason: Optional[str] = None) -> Appointment:
        """
        Cancel a consultation. An authorization hold is released through the
        settlement engine; consumed plan quota is not restored.
        """
        appointment = self._get(appointment_id)
        if actor is not None:
            self._require_participant(appointment, actor, "cancel")

        if appointment.payment_status == PaymentStatus.AUTHORIZED.value:
            appointment = await self.settlement.cancel_payment(appointment_id, actor)
        else:
            values = {"notes": reason} if reason else {}
            self._transition(appointment, AppointmentStatus.CANCELLED, **values)
            self.events.record(
                "APPOINTMENT_CANCELLED",
                actor.id if actor else None,
                appointment.id,
                details={"reason": reason},
                notify_user_ids=[appointment.patient_id, appointment.doctor.user_id if appointment.doctor else None],
                title="Consultation cancelled",
                message=reason or "The consultation was cancelled.",
            )

        session = self.repo.get_session(self.db, appointment_id)
        if session and session.status != "ended":
            self._end_session(session)
        return appointment

    def find_stale_appointments(self) -> list[int]:
        """Appointments whose scheduled window passed without the consultation starting"""
        cutoff = datetime.utcnow() - timedelta(minutes=STALE_APPOINTMENT_GRACE_MINUTES)
        stale = self.repo.get_stale(
            self.db,
            [AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value],
            cutoff,
        )
        return [
            a.id
            for a in stale
            if a.scheduled_at + timedelta(minutes=a.duration or 0) < cutoff
        ]

    # Emergency consultations

    def _pick_emergency_doctor(self, doctor_id: Optional[int]) -> Doctor:
        if doctor_id is not None:
            doctor = self.repo.get_doctor(self.db, doctor_id)
            if not doctor or doctor.status != APPROVED_DOCTOR or not doctor.available_for_emergency:
                raise HTTPException(status_code=409, detail="Doctor is not available for emergency consultations")
            return doctor
        doctor = (
            self.db.query(Doctor)
            .filter(Doctor.available_for_emergency.is_(True), Doctor.status == APPROVED_DOCTOR)
            .order_by(Doctor.id)
            .first()
        )
        if not doctor:
            raise HTTPException(status_code=503, detail="No doctor is available for emergency consultations")
        return doctor

    async def start_emergency_consultation(self, patient: User, doctor_id: Optional[int] = None) -> dict:
        """
        Open an emergency call: appointment, waiting session and video room,
        then settle payment (plan quota or authorization hold).
        """
        doctor = self._pick_emergency_doctor(doctor_id)
        now = datetime.utcnow()
        appointment = self.repo.create_appointment(
            self.db,
            patient_id=patient.id,
            doctor_id=doctor.id,
            scheduled_at=now,
            duration=EMERGENCY_CONSULTATION_DURATION,
            type=AppointmentType.EMERGENCY.value,
            status=AppointmentStatus.SCHEDULED.value,
            is_emergency=True,
            payment_status=PaymentStatus.PENDING.value,
            notes="Emergency consultation",
        )

        try:
            settlement = await self.settlement.request_preauthorization(
                appointment.id, patient, doctor_id=doctor.id, is_emergency=True
            )
        except GatewayError:
            # Outcome unknown at the gateway: keep the appointment pending so it can be retried
            logger.error(f"❌ Emergency appointment {appointment.id} payment did not go through, left pending for retry")
            raise
        except SettlementError:
            logger.error(f"❌ Emergency appointment {appointment.id} could not be settled, cancelling it")
            self._transition(appointment, AppointmentStatus.CANCELLED)
            raise

        room_name = f"emergency-{appointment.id}-{int(now.timestamp())}"
        room_url = await self._provision_room(appointment, room_name)
        appointment.telemed_room_name = room_name
        appointment.telemed_link = room_url
        self.db.commit()

        session = self.repo.create_session(
            self.db,
            appointment_id=appointment.id,
            doctor_id=doctor.id,
            patient_id=patient.id,
            room_name=room_name,
            room_url=room_url,
            status="waiting",
        )
        self.db.refresh(appointment)
        logger.info(f"🚨 Emergency appointment {appointment.id} waiting for doctor {doctor.id}")
        self.events.record(
            "EMERGENCY_STARTED",
            patient.id,
            appointment.id,
            notify_user_ids=[doctor.user_id],
            notification_type="emergency",
            title="Emergency consultation waiting",
            message=f"{patient.full_name or 'A patient'} is waiting for an emergency consultation.",
        )
        return {
            "appointment": appointment,
            "session": session,
            "chargeable": settlement["chargeable"],
            "client_secret": settlement["client_secret"],
        }

    def pending_emergencies(self, actor: User) -> list[EmergencySession]:
        doctor = self.repo.get_doctor_by_user(self.db, actor.id)
        if not doctor:
            raise HTTPException(status_code=404, detail="Doctor profile not found")
        return self.repo.list_waiting_sessions(self.db, doctor.id)

    def _get_session(self, appointment_id: int) -> EmergencySession:
        session = self.repo.get_session(self.db, appointment_id)
        if not session:
            raise AppointmentNotFound(
                f"No emergency session for appointment {appointment_id}", appointment_id=appointment_id
            )
        return session

    def accept_emergency(self, appointment_id: int, actor: User) -> EmergencySession:
        """Doctor joins the waiting call; the consultation moves to in_progress"""
        appointment = self._get(appointment_id)
        if not (actor.role == ROLE_ADMIN or is_assigned_doctor(appointment, actor)):
            self._deny(actor, appointment_id, "accept")
        session = self._get_session(appointment_id)

        updated = self.repo.transition_session(
            self.db, session.id, "waiting", {"status": "active", "accepted_at": datetime.utcnow()}
        )
        if not updated:
            self.db.rollback()
            raise HTTPException(status_code=409, detail="Emergency consultation is no longer waiting")
        self.db.commit()

        if appointment.status == AppointmentStatus.SCHEDULED.value:
            self._transition(appointment, AppointmentStatus.CONFIRMED)
        self._transition(appointment, AppointmentStatus.IN_PROGRESS)
        self.db.refresh(session)
        logger.info(f"✅ Emergency appointment {appointment_id} accepted by user {actor.id}")
        return session

    def _end_session(self, session: EmergencySession) -> None:
        self.repo.transition_session(
            self.db, session.id, session.status, {"status": "ended", "ended_at": datetime.utcnow()}
        )
        self.db.commit()

    def end_emergency(
        self,
        appointment_id: int,
        actor: User,
        notes: Optional[str] = None,
        duration: Optional[int] = None,
    ) -> Appointment:
        """
        Finish an emergency call. The actual duration (minutes) decides whether
        the doctor is paid for it; it defaults to the time since the doctor joined.
        """
        appointment = self._get(appointment_id)
        if not (actor.role == ROLE_ADMIN or is_patient(appointment, actor) or is_assigned_doctor(appointment, actor)):
            self._deny(actor, appointment_id, "end")
        session = self._get_session(appointment_id)

        if duration is None:
            if session.accepted_at:
                elapsed = (datetime.utcnow() - session.accepted_at).total_seconds()
                duration = max(1, math.ceil(elapsed / 60))
            else:
                duration = appointment.duration

        values = {"duration": duration}
        if notes:
            values["notes"] = notes
        self._transition(appointment, AppointmentStatus.COMPLETED, **values)
        self._end_session(session)
        self.earnings.compute_earnings(appointment_id)
        logger.info(f"✅ Emergency appointment {appointment_id} ended after {duration} minutes")
        return appointment
