import asyncio

import pytest

from telecare.domain.appointments.state import authorization_reference_consistent
from telecare.domain.quota.tracker import QuotaTracker
from telecare.domain.settlement.service import SettlementService
from telecare.errors import (
    AlreadyAuthorized,
    AuthorizationFailed,
    CaptureFailed,
    GatewayTimeout,
    InvalidAppointmentState,
    InvalidPaymentState,
    PaymentMethodMissing,
    SettlementPermissionDenied,
)
from telecare.models_appointment import Appointment
from telecare.models_earnings import DoctorEarning
from telecare.models_notification import AuditLog


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def service(db, gateway):
    return SettlementService(db, gateway)


def test_unlimited_plan_emergency_never_calls_gateway(service, gateway, make_user, doctor, make_appointment):
    patient = make_user(plan="premium")
    appointment = make_appointment(patient, doctor, is_emergency=True)

    result = run(service.request_preauthorization(appointment.id, patient))

    assert result["chargeable"] is False
    assert result["appointment"].payment_status == "included_in_plan"
    assert result["appointment"].payment_authorization_id is None
    assert gateway.calls == []


def test_basic_plan_emergencies_switch_to_chargeable_when_quota_runs_out(
    db, service, gateway, patient, doctor, make_appointment
):
    QuotaTracker(db).reset_quota(patient.id)
    tracker = QuotaTracker(db)
    first = make_appointment(patient, doctor, is_emergency=True)
    run(service.request_preauthorization(first.id, patient))
    assert tracker.has_remaining_quota(patient.id) == 1

    second = make_appointment(patient, doctor, is_emergency=True)
    result = run(service.request_preauthorization(second.id, patient))
    assert result["chargeable"] is False
    assert tracker.has_remaining_quota(patient.id) == 0

    third = make_appointment(patient, doctor, is_emergency=True)
    result = run(service.request_preauthorization(third.id, patient))

    assert result["chargeable"] is True
    assert result["appointment"].payment_status == "authorized"
    assert result["appointment"].payment_amount == 9900
    assert len(gateway.ops("create")) == 1
    assert tracker.has_remaining_quota(patient.id) == 0


def test_basic_plan_with_one_left_then_chargeable_with_quoted_amount(
    db, service, gateway, patient, doctor, make_appointment
):
    entry = QuotaTracker(db).get_entry(patient)
    entry.remaining = 1
    db.commit()

    first = make_appointment(patient, doctor, is_emergency=True)
    second = make_appointment(patient, doctor, is_emergency=True)

    assert run(service.request_preauthorization(first.id, patient))["chargeable"] is False
    result = run(service.request_preauthorization(second.id, patient))

    assert result["chargeable"] is True
    assert result["client_secret"] == "pi_test_1_secret"
    _, amount, customer, metadata = gateway.ops("create")[0]
    assert amount == 9900
    assert customer == "cus_test"
    assert metadata["appointment_id"] == second.id
    assert metadata["is_emergency"] == "true"


def test_free_plan_emergency_is_chargeable(service, gateway, make_user, doctor, make_appointment):
    patient = make_user(plan="free")
    appointment = make_appointment(patient, doctor, is_emergency=True)

    result = run(service.request_preauthorization(appointment.id, patient, amount=12000))

    assert result["appointment"].payment_amount == 12000
    assert gateway.ops("create")[0][1] == 12000


def test_regular_consultation_quotes_discounted_doctor_fee(service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)

    result = run(service.request_preauthorization(appointment.id, patient))

    # Basic plan: 30% off the 10000 fee
    assert result["appointment"].payment_amount == 7000
    assert result["appointment"].payment_authorization_id == "pi_test_1"


def test_missing_payment_method(service, gateway, make_user, doctor, make_appointment):
    patient = make_user(plan="premium", payment_customer_id=None)
    appointment = make_appointment(patient, doctor, is_emergency=True)

    with pytest.raises(PaymentMethodMissing):
        run(service.request_preauthorization(appointment.id, patient))
    assert gateway.calls == []


def test_authorization_failure_leaves_payment_pending(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    gateway.errors["create"].append(AuthorizationFailed("card declined", gateway_code="card_declined"))

    with pytest.raises(AuthorizationFailed) as exc_info:
        run(service.request_preauthorization(appointment.id, patient))

    assert exc_info.value.appointment_id == appointment.id
    db.refresh(appointment)
    assert appointment.payment_status == "pending"
    assert appointment.payment_authorization_id is None


def test_second_preauthorization_is_rejected(service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    run(service.request_preauthorization(appointment.id, patient))

    with pytest.raises(AlreadyAuthorized):
        run(service.request_preauthorization(appointment.id, patient))
    assert len(gateway.ops("create")) == 1


def test_preauthorization_on_included_consultation_is_illegal(service, make_user, doctor, make_appointment):
    patient = make_user(plan="premium")
    appointment = make_appointment(patient, doctor, is_emergency=True)
    run(service.request_preauthorization(appointment.id, patient))

    with pytest.raises(InvalidPaymentState):
        run(service.request_preauthorization(appointment.id, patient))


def test_concurrent_winner_releases_loser_authorization(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)

    def concurrent_request_wins(intent_id):
        db.query(Appointment).filter(Appointment.id == appointment.id).update(
            {"payment_status": "authorized", "payment_authorization_id": "pi_winner"},
            synchronize_session=False,
        )
        db.commit()

    gateway.on_create = concurrent_request_wins

    with pytest.raises(AlreadyAuthorized):
        run(service.request_preauthorization(appointment.id, patient))

    assert gateway.ops("cancel") == [("cancel", "pi_test_1")]
    db.refresh(appointment)
    assert appointment.payment_authorization_id == "pi_winner"


def test_only_patient_or_admin_may_preauthorize(service, patient, make_user, doctor, make_appointment, admin):
    appointment = make_appointment(patient, doctor)
    stranger = make_user(plan="basic")

    with pytest.raises(SettlementPermissionDenied):
        run(service.request_preauthorization(appointment.id, stranger))

    result = run(service.request_preauthorization(appointment.id, admin))
    assert result["appointment"].payment_status == "authorized"


def test_emergency_flag_must_match_appointment(service, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    with pytest.raises(InvalidAppointmentState):
        run(service.request_preauthorization(appointment.id, patient, is_emergency=True))


def test_capture_included_in_plan_is_a_noop(service, gateway, make_user, doctor, make_appointment):
    patient = make_user(plan="ultra")
    appointment = make_appointment(patient, doctor, is_emergency=True, status="in_progress")
    run(service.request_preauthorization(appointment.id, patient))

    result = run(service.capture_payment(appointment.id, doctor.user))

    assert result.payment_status == "included_in_plan"
    assert result.status == "in_progress"
    assert gateway.ops("capture") == []


def test_capture_pending_is_illegal(service, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="confirmed")
    with pytest.raises(InvalidPaymentState):
        run(service.capture_payment(appointment.id, doctor.user))


def test_capture_completes_consultation_and_payment(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="in_progress")
    run(service.request_preauthorization(appointment.id, patient))

    result = run(service.capture_payment(appointment.id, doctor.user))

    assert result.status == "completed"
    assert result.payment_status == "completed"
    assert result.payment_captured_at is not None
    assert gateway.capture_count == 1
    line = db.query(DoctorEarning).filter_by(appointment_id=appointment.id).one()
    assert line.amount == 7000
    assert db.query(AuditLog).filter_by(action="PAYMENT_CAPTURED").count() == 1


def test_capture_requires_started_consultation(service, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="scheduled")
    run(service.request_preauthorization(appointment.id, patient))

    with pytest.raises(InvalidAppointmentState):
        run(service.capture_payment(appointment.id, doctor.user))


def test_only_assigned_doctor_or_admin_may_capture(service, patient, make_doctor, doctor, make_appointment, admin):
    appointment = make_appointment(patient, doctor, status="confirmed")
    run(service.request_preauthorization(appointment.id, patient))
    other_doctor = make_doctor()

    with pytest.raises(SettlementPermissionDenied):
        run(service.capture_payment(appointment.id, patient))
    with pytest.raises(SettlementPermissionDenied):
        run(service.capture_payment(appointment.id, other_doctor.user))

    assert run(service.capture_payment(appointment.id, admin)).payment_status == "completed"


def test_capture_failure_keeps_authorization(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="in_progress")
    run(service.request_preauthorization(appointment.id, patient))
    gateway.errors["capture"].append(CaptureFailed("processor error"))

    with pytest.raises(CaptureFailed):
        run(service.capture_payment(appointment.id, doctor.user))

    db.refresh(appointment)
    assert appointment.payment_status == "authorized"
    assert appointment.status == "in_progress"


def test_capture_timeout_then_retry_completes_exactly_once(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="in_progress")
    run(service.request_preauthorization(appointment.id, patient))
    gateway.lost_responses["capture"] = 1

    with pytest.raises(GatewayTimeout):
        run(service.capture_payment(appointment.id, doctor.user))
    db.refresh(appointment)
    assert appointment.payment_status == "authorized"

    result = run(service.capture_payment(appointment.id, doctor.user))

    assert result.payment_status == "completed"
    assert gateway.capture_count == 1
    assert db.query(DoctorEarning).filter_by(appointment_id=appointment.id).count() == 1

    with pytest.raises(InvalidPaymentState):
        run(service.capture_payment(appointment.id, doctor.user))


def test_preauthorize_then_cancel(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    run(service.request_preauthorization(appointment.id, patient))

    result = run(service.cancel_payment(appointment.id, patient))

    assert result.payment_status == "cancelled"
    assert result.status == "cancelled"
    assert result.payment_authorization_id == "pi_test_1"
    assert gateway.intents["pi_test_1"]["status"] == "canceled"

    with pytest.raises(InvalidPaymentState):
        run(service.cancel_payment(appointment.id, patient))


def test_cancel_failure_leaves_state_unchanged(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    run(service.request_preauthorization(appointment.id, patient))
    gateway.lost_responses["cancel"] = 1

    with pytest.raises(GatewayTimeout):
        run(service.cancel_payment(appointment.id, doctor.user))

    db.refresh(appointment)
    assert appointment.payment_status == "authorized"
    assert appointment.status == "scheduled"


def test_cancel_of_completed_consultation_is_illegal(service, patient, doctor, make_appointment):
    appointment = make_appointment(
        patient, doctor, status="completed", payment_status="authorized", payment_authorization_id="pi_done"
    )
    with pytest.raises(InvalidAppointmentState):
        run(service.cancel_payment(appointment.id, patient))


def test_stranger_cannot_cancel(service, patient, make_user, doctor, make_appointment):
    appointment = make_appointment(patient, doctor)
    run(service.request_preauthorization(appointment.id, patient))
    with pytest.raises(SettlementPermissionDenied):
        run(service.cancel_payment(appointment.id, make_user()))


def test_retry_after_quota_consumed_stays_included(db, service, gateway, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    entry = tracker.get_entry(patient)
    entry.remaining = 1
    db.commit()
    appointment = make_appointment(patient, doctor, is_emergency=True)
    # First attempt consumed the last unit but never recorded the payment status
    assert tracker.decrement_once(patient.id, appointment.id) is True

    result = run(service.request_preauthorization(appointment.id, patient))

    assert result["chargeable"] is False
    assert result["appointment"].payment_status == "included_in_plan"
    assert gateway.calls == []
    assert tracker.has_remaining_quota(patient.id) == 0


def test_capture_without_assigned_doctor_still_succeeds(db, service, gateway, patient, admin, make_appointment):
    appointment = make_appointment(patient, None, status="confirmed")
    run(service.request_preauthorization(appointment.id, admin, amount=5000))

    result = run(service.capture_payment(appointment.id, admin))

    assert result.payment_status == "completed"
    assert result.status == "completed"
    assert gateway.capture_count == 1
    assert db.query(DoctorEarning).count() == 0
    assert db.query(AuditLog).filter_by(action="PAYMENT_CAPTURED").count() == 1


def test_authorized_payment_without_reference_is_not_settled(db, service, gateway, patient, doctor, make_appointment):
    appointment = make_appointment(patient, doctor, status="in_progress", payment_status="authorized")

    with pytest.raises(InvalidPaymentState):
        run(service.capture_payment(appointment.id, doctor.user))
    with pytest.raises(InvalidPaymentState):
        run(service.cancel_payment(appointment.id, patient))
    assert gateway.calls == []


def test_authorization_reference_matches_payment_status(db, service, make_user, patient, doctor, make_appointment):
    covered = make_appointment(make_user(plan="premium"), doctor, is_emergency=True)
    run(service.request_preauthorization(covered.id, covered.patient))
    captured = make_appointment(patient, doctor, status="in_progress")
    run(service.request_preauthorization(captured.id, patient))
    run(service.capture_payment(captured.id, doctor.user))
    released = make_appointment(patient, doctor)
    run(service.request_preauthorization(released.id, patient))
    run(service.cancel_payment(released.id, patient))
    held = make_appointment(patient, doctor)
    run(service.request_preauthorization(held.id, patient))
    untouched = make_appointment(patient, doctor)

    for appointment in db.query(Appointment).all():
        assert authorization_reference_consistent(appointment.payment_status, appointment.payment_authorization_id)
    statuses = {a.payment_status for a in db.query(Appointment).all()}
    assert statuses == {"included_in_plan", "completed", "cancelled", "authorized", "pending"}
    assert untouched.payment_authorization_id is None
