from datetime import datetime, timedelta

import pytest

from telecare.domain.quota.tracker import QuotaTracker, calculate_cycle
from telecare.errors import QuotaExceededButNotChargeable
from telecare.models import QuotaConsumption


def test_unlimited_plan_has_no_limit(db, make_user):
    patient = make_user(plan="premium")
    assert QuotaTracker(db).has_remaining_quota(patient.id) is None


def test_numeric_plan_starts_with_full_quota(db, make_user):
    patient = make_user(plan="basic")
    assert QuotaTracker(db).has_remaining_quota(patient.id) == 2


def test_free_plan_has_zero(db, make_user):
    patient = make_user(plan=None)
    assert QuotaTracker(db).has_remaining_quota(patient.id) == 0


def test_decrement_is_idempotent_per_appointment(db, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    appointment = make_appointment(patient, doctor, is_emergency=True)

    assert tracker.decrement_once(patient.id, appointment.id) is True
    assert tracker.decrement_once(patient.id, appointment.id) is False

    assert tracker.has_remaining_quota(patient.id) == 1
    assert db.query(QuotaConsumption).filter_by(appointment_id=appointment.id).count() == 1


def test_quota_never_goes_below_zero(db, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    first, second, third = (make_appointment(patient, doctor, is_emergency=True) for _ in range(3))

    tracker.decrement_once(patient.id, first.id)
    tracker.decrement_once(patient.id, second.id)
    with pytest.raises(QuotaExceededButNotChargeable):
        tracker.decrement_once(patient.id, third.id)

    assert tracker.has_remaining_quota(patient.id) == 0
    # The refused decrement leaves no marker behind
    assert db.query(QuotaConsumption).filter_by(appointment_id=third.id).count() == 0


def test_unlimited_decrement_records_marker_only(db, make_user, doctor, make_appointment):
    patient = make_user(plan="ultra")
    appointment = make_appointment(patient, doctor, is_emergency=True)
    tracker = QuotaTracker(db)

    assert tracker.decrement_once(patient.id, appointment.id) is True
    assert tracker.has_remaining_quota(patient.id) is None
    assert tracker.get_usage_stats(patient)["used"] == 1


def test_reset_quota_applies_plan_change(db, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    tracker.decrement_once(patient.id, make_appointment(patient, doctor, is_emergency=True).id)
    assert tracker.has_remaining_quota(patient.id) == 1

    tracker.reset_quota(patient.id)
    assert tracker.has_remaining_quota(patient.id) == 2

    entry = tracker.reset_quota(patient.id, "premium")
    assert entry.plan_name == "premium"
    assert entry.remaining is None


def test_expired_cycle_rolls_over_on_read(db, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    tracker.decrement_once(patient.id, make_appointment(patient, doctor, is_emergency=True).id)
    entry = tracker.get_entry(patient)
    entry.cycle_end = datetime.utcnow() - timedelta(minutes=1)
    db.commit()

    assert tracker.has_remaining_quota(patient.id) == 2


def test_rollover_expired_resets_only_finished_cycles(db, make_user):
    tracker = QuotaTracker(db)
    ended = make_user(plan="basic")
    running = make_user(plan="basic")
    ended_entry = tracker.get_entry(ended)
    tracker.get_entry(running)
    ended_entry.remaining = 0
    ended_entry.cycle_end = datetime.utcnow() - timedelta(days=1)
    db.commit()

    assert tracker.rollover_expired() == 1
    assert tracker.has_remaining_quota(ended.id) == 2


def test_cycles_are_anchored_on_subscription_start():
    anchor = datetime(2024, 1, 10)
    start, end = calculate_cycle(anchor, datetime(2024, 3, 1))
    assert start == datetime(2024, 2, 9)
    assert end == datetime(2024, 3, 10)


def test_usage_stats(db, patient, doctor, make_appointment):
    tracker = QuotaTracker(db)
    tracker.decrement_once(patient.id, make_appointment(patient, doctor, is_emergency=True).id)

    stats = tracker.get_usage_stats(patient)
    assert stats["plan"] == "basic"
    assert stats["limit"] == 2
    assert stats["used"] == 1
    assert stats["remaining"] == 1
    assert stats["reset_date"] > datetime.utcnow()
