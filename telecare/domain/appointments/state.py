"""
Consultation status and payment status state machines.

Every write to ``Appointment.status`` or ``Appointment.payment_status`` goes
through the transition tables below; nothing assigns these fields freely.
"""

import enum

from ...errors import InvalidAppointmentState, InvalidPaymentState


class AppointmentStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    INCLUDED_IN_PLAN = "included_in_plan"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class AppointmentType(str, enum.Enum):
    TELEMEDICINE = "telemedicine"
    EMERGENCY = "emergency"


STATUS_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED},
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.IN_PROGRESS,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.CANCELLED,
    },
    AppointmentStatus.IN_PROGRESS: {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED},
    AppointmentStatus.COMPLETED: set(),
    AppointmentStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.INCLUDED_IN_PLAN, PaymentStatus.AUTHORIZED},
    PaymentStatus.AUTHORIZED: {PaymentStatus.COMPLETED, PaymentStatus.CANCELLED},
    PaymentStatus.INCLUDED_IN_PLAN: set(),
    PaymentStatus.COMPLETED: set(),
    PaymentStatus.CANCELLED: set(),
}

TERMINAL_STATUSES = {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED}

# Payment statuses that must carry a gateway authorization reference
AUTHORIZATION_BACKED = {PaymentStatus.AUTHORIZED, PaymentStatus.COMPLETED, PaymentStatus.CANCELLED}


def can_transition_status(current, target) -> bool:
    return AppointmentStatus(target) in STATUS_TRANSITIONS[AppointmentStatus(current)]


def can_transition_payment(current, target) -> bool:
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def ensure_status_transition(current, target, appointment_id: int = None) -> None:
    """Raise InvalidAppointmentState unless current -> target is a legal status move"""
    if not can_transition_status(current, target):
        raise InvalidAppointmentState(
            f"Appointment {appointment_id}: status cannot move from "
            f"'{AppointmentStatus(current).value}' to '{AppointmentStatus(target).value}'",
            appointment_id=appointment_id,
        )


def ensure_payment_transition(current, target, appointment_id: int = None) -> None:
    """Raise InvalidPaymentState unless current -> target is a legal payment move"""
    if not can_transition_payment(current, target):
        raise InvalidPaymentState(
            f"Appointment {appointment_id}: payment status cannot move from "
            f"'{PaymentStatus(current).value}' to '{PaymentStatus(target).value}'",
            appointment_id=appointment_id,
        )


def authorization_reference_consistent(payment_status, authorization_id) -> bool:
    """A gateway authorization id is present exactly for authorization-backed payment statuses"""
    return (PaymentStatus(payment_status) in AUTHORIZATION_BACKED) == (authorization_id is not None)
