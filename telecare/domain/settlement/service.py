"""
Settlement orchestrator - two-phase payment settlement of consultations

Booking a consultation either consumes an emergency consultation included in
the patient's plan, or places a hold on the patient's card (authorization).
When the consultation is completed the hold is captured; when it is
cancelled the hold is released.

Every local write is a conditional update on the expected payment status,
issued after the gateway call returns. Gateway failures and timeouts leave
the appointment exactly as it was, so the operation can be retried.
"""

import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from ...config import EMERGENCY_CONSULTATION_PRICE
from ...errors import (
    AlreadyAuthorized,
    AppointmentNotFound,
    GatewayError,
    InvalidAppointmentState,
    InvalidPaymentState,
    PaymentMethodMissing,
    QuotaExceededButNotChargeable,
    SettlementError,
    SettlementPermissionDenied,
)
from ...models import ROLE_ADMIN, User
from ...models_appointment import Appointment
from ...services.notification_service import SettlementEventSink
from ...services.payment_gateway import PaymentGateway
from ..appointments.repository import AppointmentRepository
from ..appointments.state import (
    AppointmentStatus,
    PaymentStatus,
    TERMINAL_STATUSES,
    authorization_reference_consistent,
    ensure_payment_transition,
    ensure_status_transition,
)
from ..earnings.service import EarningsService
from ..plans.catalog import PlanCatalog
from ..quota.tracker import QuotaTracker

logger = logging.getLogger(__name__)

# Consultation statuses from which a captured payment may complete the consultation
CAPTURABLE_STATUSES = {
    AppointmentStatus.CONFIRMED.value,
    AppointmentStatus.IN_PROGRESS.value,
    AppointmentStatus.COMPLETED.value,
}


def is_admin(actor: Optional[User]) -> bool:
    """Background jobs act without a user and have admin capability"""
    return actor is None or actor.role == ROLE_ADMIN


def is_patient(appointment: Appointment, actor: Optional[User]) -> bool:
    return actor is not None and appointment.patient_id == actor.id


def is_assigned_doctor(appointment: Appointment, actor: Optional[User]) -> bool:
    return actor is not None and appointment.doctor is not None and appointment.doctor.user_id == actor.id


class SettlementService:
    """Chargeability decision, authorization and capture/cancel resolution"""

    def __init__(self, db: Session, gateway: PaymentGateway, events: Optional[SettlementEventSink] = None):
        self.db = db
        self.gateway = gateway
        self.repo = AppointmentRepository()
        self.catalog = PlanCatalog(db)
        self.quota = QuotaTracker(db)
        self.earnings = EarningsService(db)
        self.events = events or SettlementEventSink(db)

    def _get_appointment(self, appointment_id: int) -> Appointment:
        appointment = self.repo.get_appointment(self.db, appointment_id)
        if not appointment:
            raise AppointmentNotFound(f"Appointment {appointment_id} not found", appointment_id=appointment_id)
        return appointment

    def _reload(self, appointment: Appointment) -> Appointment:
        self.db.refresh(appointment)
        return appointment

    def quote_amount(self, appointment: Appointment) -> int:
        """Amount to authorize when the caller does not provide one"""
        if appointment.is_emergency:
            return EMERGENCY_CONSULTATION_PRICE
        doctor = appointment.doctor
        if not doctor or not doctor.consultation_fee:
            raise InvalidAppointmentState(
                f"Appointment {appointment.id} has no doctor fee to quote", appointment_id=appointment.id
            )
        final_price, discount = self.catalog.quote_consultation_price(
            doctor.consultation_fee, appointment.patient.plan
        )
        logger.debug(f"Quoted {final_price} ({discount}% off {doctor.consultation_fee}) for appointment {appointment.id}")
        return final_price

    def _ensure_preauthorizable(self, appointment: Appointment) -> None:
        if appointment.payment_status == PaymentStatus.AUTHORIZED.value:
            raise AlreadyAuthorized(
                f"Appointment {appointment.id} already has authorization {appointment.payment_authorization_id}",
                appointment_id=appointment.id,
            )
        ensure_payment_transition(appointment.payment_status, PaymentStatus.AUTHORIZED, appointment.id)
        if AppointmentStatus(appointment.status) in TERMINAL_STATUSES:
            raise InvalidAppointmentState(
                f"Appointment {appointment.id} is {appointment.status}", appointment_id=appointment.id
            )

    def _ensure_authorization_reference(self, appointment: Appointment) -> None:
        if not authorization_reference_consistent(appointment.payment_status, appointment.payment_authorization_id):
            logger.error(
                f"❌ Appointment {appointment.id} is {appointment.payment_status} "
                f"with authorization {appointment.payment_authorization_id!r}"
            )
            raise InvalidPaymentState(
                f"Appointment {appointment.id} has no gateway authorization to settle",
                appointment_id=appointment.id,
            )

    def _emergency_included(self, appointment: Appointment) -> bool:
        """
        Try to cover an emergency consultation with the patient's plan.
        Returns False when the consultation is chargeable.
        """
        patient_id = appointment.patient_id
        if self.quota.has_consumed(appointment.id):
            logger.info(f"ℹ️ Appointment {appointment.id} already consumed quota, keeping it included")
            return True

        remaining = self.quota.has_remaining_quota(patient_id)
        if remaining is not None and remaining <= 0:
            logger.info(f"Emergency quota exhausted for patient {patient_id}, consultation is chargeable")
            return False

        try:
            consumed = self.quota.decrement_once(patient_id, appointment.id)
        except QuotaExceededButNotChargeable:
            # Another consultation took the last unit between the read and the decrement
            logger.warning(f"⚠️ Quota ran out during preauthorization of appointment {appointment.id}, charging")
            return False
        if not consumed:
            logger.info(f"ℹ️ Appointment {appointment.id} had already consumed quota")
        return True

    async def request_preauthorization(
        self,
        appointment_id: int,
        actor: Optional[User],
        amount: Optional[int] = None,
        doctor_id: Optional[int] = None,
        is_emergency: Optional[bool] = None,
    ) -> dict:
        """
        Secure payment for a booked consultation.

        Emergency consultations covered by the plan are marked included_in_plan
        without touching the gateway. Everything else gets an authorization
        hold of `amount` cents (quoted from the doctor fee and plan discount,
        or the emergency price, when omitted).

        Returns dict with the appointment, whether it was chargeable, and the
        gateway client secret for confirming the hold client-side.
        """
        appointment = self._get_appointment(appointment_id)

        if not (is_admin(actor) or is_patient(appointment, actor)):
            raise SettlementPermissionDenied(
                f"User {actor.id} cannot authorize payment of appointment {appointment_id}",
                appointment_id=appointment_id,
            )
        if is_emergency is not None and is_emergency != appointment.is_emergency:
            raise InvalidAppointmentState(
                f"Appointment {appointment_id} emergency flag does not match the request",
                appointment_id=appointment_id,
            )
        if doctor_id is not None and appointment.doctor_id not in (None, doctor_id):
            raise InvalidAppointmentState(
                f"Appointment {appointment_id} is assigned to doctor {appointment.doctor_id}, not {doctor_id}",
                appointment_id=appointment_id,
            )
        self._ensure_preauthorizable(appointment)

        patient = appointment.patient
        if not patient.payment_customer_id:
            raise PaymentMethodMissing(
                f"Patient {patient.id} has no saved payment method", appointment_id=appointment_id
            )

        doctor_id = doctor_id or appointment.doctor_id
        assignment = {"doctor_id": doctor_id} if doctor_id else {}

        if appointment.is_emergency and self._emergency_included(appointment):
            updated = self.repo.conditional_update(
                self.db,
                appointment_id,
                expected={"payment_status": PaymentStatus.PENDING.value},
                values={"payment_status": PaymentStatus.INCLUDED_IN_PLAN.value, "payment_amount": 0, **assignment},
            )
            if not updated:
                self.db.rollback()
                self._reload(appointment)
                self._ensure_preauthorizable(appointment)
                raise InvalidPaymentState(appointment_id=appointment_id)
            self.db.commit()
            self._reload(appointment)
            logger.info(f"✅ Emergency appointment {appointment_id} included in plan of patient {patient.id}")
            self.events.record(
                "PAYMENT_INCLUDED_IN_PLAN",
                actor.id if actor else None,
                appointment_id,
                details={"plan": patient.plan},
                notify_user_ids=[patient.id],
                notification_type="payment",
                title="Emergency consultation included in your plan",
                message="This emergency consultation was covered by your subscription.",
            )
            return {"appointment": appointment, "chargeable": False, "client_secret": None}

        if amount is None:
            amount = self.quote_amount(appointment)

        try:
            authorization = await self.gateway.create_authorization(
                amount,
                patient.payment_customer_id,
                metadata={
                    "appointment_id": appointment_id,
                    "patient_id": patient.id,
                    "doctor_id": doctor_id or "",
                    "is_emergency": str(appointment.is_emergency).lower(),
                },
            )
        except GatewayError as e:
            e.appointment_id = appointment_id
            logger.error(f"❌ Authorization failed for appointment {appointment_id}: {e.detail}")
            raise

        authorization_id = authorization["id"]
        updated = self.repo.conditional_update(
            self.db,
            appointment_id,
            expected={"payment_status": PaymentStatus.PENDING.value},
            values={
                "payment_status": PaymentStatus.AUTHORIZED.value,
                "payment_authorization_id": authorization_id,
                "payment_amount": amount,
                **assignment,
            },
        )
        if not updated:
            # A concurrent request settled this appointment first: release our hold
            self.db.rollback()
            logger.warning(
                f"⚠️ Appointment {appointment_id} was settled concurrently, releasing authorization {authorization_id}"
            )
            try:
                await self.gateway.cancel(authorization_id)
            except GatewayError as e:
                logger.error(f"❌ Could not release duplicate authorization {authorization_id}: {e.detail}")
            raise AlreadyAuthorized(appointment_id=appointment_id)

        self.db.commit()
        self._reload(appointment)
        logger.info(f"✅ Appointment {appointment_id} authorized for {amount} ({authorization_id})")
        self.events.record(
            "PAYMENT_AUTHORIZED",
            actor.id if actor else None,
            appointment_id,
            details={"authorization_id": authorization_id, "amount": amount},
            notify_user_ids=[patient.id],
            notification_type="payment",
            title="Payment authorized",
            message="The consultation amount is on hold and will only be charged after the consultation.",
        )
        return {"appointment": appointment, "chargeable": True, "client_secret": authorization.get("client_secret")}

    async def capture_payment(self, appointment_id: int, actor: Optional[User]) -> Appointment:
        """
        Charge the held amount and complete the consultation.
        Consultations included in the plan are returned unchanged.
        """
        appointment = self._get_appointment(appointment_id)

        if not (is_admin(actor) or is_assigned_doctor(appointment, actor)):
            raise SettlementPermissionDenied(
                f"User {actor.id} cannot capture payment of appointment {appointment_id}",
                appointment_id=appointment_id,
            )

        if appointment.payment_status == PaymentStatus.INCLUDED_IN_PLAN.value:
            logger.info(f"ℹ️ Appointment {appointment_id} is included in plan, nothing to capture")
            return appointment

        ensure_payment_transition(appointment.payment_status, PaymentStatus.COMPLETED, appointment_id)
        if appointment.status not in CAPTURABLE_STATUSES:
            raise InvalidAppointmentState(
                f"Appointment {appointment_id} is {appointment.status}, capture requires a started consultation",
                appointment_id=appointment_id,
            )

        authorization_id = appointment.payment_authorization_id
        self._ensure_authorization_reference(appointment)
        try:
            await self.gateway.capture(authorization_id)
        except GatewayError as e:
            e.appointment_id = appointment_id
            logger.error(f"❌ Capture failed for appointment {appointment_id} ({authorization_id}): {e.detail}")
            raise

        updated = self.repo.conditional_update(
            self.db,
            appointment_id,
            expected={"payment_status": PaymentStatus.AUTHORIZED.value, "status": CAPTURABLE_STATUSES},
            values={
                "payment_status": PaymentStatus.COMPLETED.value,
                "status": AppointmentStatus.COMPLETED.value,
                "payment_captured_at": datetime.utcnow(),
            },
        )
        if not updated:
            self.db.rollback()
            self._reload(appointment)
            if appointment.payment_status == PaymentStatus.COMPLETED.value:
                logger.info(f"ℹ️ Appointment {appointment_id} was captured by a concurrent request")
                return appointment
            raise InvalidPaymentState(
                f"Appointment {appointment_id} changed to {appointment.payment_status} during capture",
                appointment_id=appointment_id,
            )

        self.db.commit()
        self._reload(appointment)
        logger.info(f"✅ Payment captured for appointment {appointment_id} ({authorization_id})")

        # The payment is settled at this point; earnings must not turn it into a failure
        if appointment.doctor_id is None:
            logger.warning(f"⚠️ Appointment {appointment_id} captured without an assigned doctor, no earnings line")
        else:
            try:
                self.earnings.compute_earnings(appointment_id)
            except SettlementError as e:
                self.db.rollback()
                logger.error(f"❌ Earnings not computed for captured appointment {appointment_id}: {e.detail}")
        self.events.record(
            "PAYMENT_CAPTURED",
            actor.id if actor else None,
            appointment_id,
            details={"authorization_id": authorization_id, "amount": appointment.payment_amount},
            notify_user_ids=[appointment.patient_id],
            notification_type="payment",
            title="Payment completed",
            message="Your consultation payment was processed successfully.",
        )
        return appointment

    async def cancel_payment(self, appointment_id: int, actor: Optional[User]) -> Appointment:
        """Release the held amount and cancel the consultation"""
        appointment = self._get_appointment(appointment_id)

        if not (is_admin(actor) or is_patient(appointment, actor) or is_assigned_doctor(appointment, actor)):
            raise SettlementPermissionDenied(
                f"User {actor.id} cannot cancel payment of appointment {appointment_id}",
                appointment_id=appointment_id,
            )

        ensure_payment_transition(appointment.payment_status, PaymentStatus.CANCELLED, appointment_id)
        if appointment.status != AppointmentStatus.CANCELLED.value:
            ensure_status_transition(appointment.status, AppointmentStatus.CANCELLED, appointment_id)

        authorization_id = appointment.payment_authorization_id
        self._ensure_authorization_reference(appointment)
        try:
            await self.gateway.cancel(authorization_id)
        except GatewayError as e:
            e.appointment_id = appointment_id
            logger.error(f"❌ Cancel failed for appointment {appointment_id} ({authorization_id}): {e.detail}")
            raise

        updated = self.repo.conditional_update(
            self.db,
            appointment_id,
            expected={"payment_status": PaymentStatus.AUTHORIZED.value, "status": appointment.status},
            values={
                "payment_status": PaymentStatus.CANCELLED.value,
                "status": AppointmentStatus.CANCELLED.value,
            },
        )
        if not updated:
            self.db.rollback()
            self._reload(appointment)
            raise InvalidPaymentState(
                f"Appointment {appointment_id} changed to {appointment.payment_status} during cancel",
                appointment_id=appointment_id,
            )

        self.db.commit()
        self._reload(appointment)
        logger.info(f"✅ Authorization {authorization_id} released, appointment {appointment_id} cancelled")
        self.events.record(
            "PAYMENT_CANCELLED",
            actor.id if actor else None,
            appointment_id,
            details={"authorization_id": authorization_id},
            notify_user_ids=[appointment.patient_id, appointment.doctor.user_id if appointment.doctor else None],
            notification_type="payment",
            title="Consultation cancelled",
            message="The consultation was cancelled and the payment hold was released.",
        )
        return appointment
