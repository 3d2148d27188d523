"""
Test configuration for the settlement engine.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from telecare.auth import create_access_token
from telecare.database import Base, get_db
from telecare.domain.plans.catalog import ensure_default_plans
from telecare.errors import CancelFailed, CaptureFailed, GatewayTimeout
from telecare.main import app
from telecare.models import ROLE_ADMIN, ROLE_DOCTOR, ROLE_PATIENT, Doctor, User
from telecare.models_appointment import Appointment
from telecare.services.payment_gateway import PaymentGateway, get_payment_gateway
from telecare.services.video_service import VideoRoomError, get_video_service

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


class FakeGateway(PaymentGateway):
    """
    In-memory payment processor.

    `errors[op]` holds exceptions raised before the operation is applied.
    `lost_responses[op]` counts calls that are applied remotely but time out
    before the response arrives.
    """

    def __init__(self):
        self.intents = {}
        self.calls = []
        self.errors = {"create": [], "capture": [], "cancel": []}
        self.lost_responses = {"capture": 0, "cancel": 0}
        self.capture_count = 0
        self.on_create = None

    def _raise_queued(self, op):
        if self.errors[op]:
            raise self.errors[op].pop(0)

    def _maybe_lose_response(self, op):
        if self.lost_responses[op]:
            self.lost_responses[op] -= 1
            raise GatewayTimeout(f"{op} timed out")

    async def create_authorization(self, amount, customer_ref, metadata):
        self.calls.append(("create", amount, customer_ref, metadata))
        self._raise_queued("create")
        intent_id = f"pi_test_{len(self.intents) + 1}"
        self.intents[intent_id] = {"status": "requires_capture", "amount": amount}
        if self.on_create:
            self.on_create(intent_id)
        return {"id": intent_id, "client_secret": f"{intent_id}_secret", "status": "requires_capture"}

    async def capture(self, authorization_id):
        self.calls.append(("capture", authorization_id))
        self._raise_queued("capture")
        intent = self.intents[authorization_id]
        if intent["status"] == "requires_capture":
            intent["status"] = "succeeded"
            self.capture_count += 1
        elif intent["status"] != "succeeded":
            raise CaptureFailed("unexpected state", gateway_code="payment_intent_unexpected_state")
        self._maybe_lose_response("capture")
        return {"id": authorization_id, "status": intent["status"]}

    async def cancel(self, authorization_id):
        self.calls.append(("cancel", authorization_id))
        self._raise_queued("cancel")
        intent = self.intents[authorization_id]
        if intent["status"] == "requires_capture":
            intent["status"] = "canceled"
        elif intent["status"] != "canceled":
            raise CancelFailed("unexpected state", gateway_code="payment_intent_unexpected_state")
        self._maybe_lose_response("cancel")
        return {"id": authorization_id, "status": intent["status"]}

    def ops(self, op):
        return [call for call in self.calls if call[0] == op]


class FakeVideo:
    def __init__(self, fail=False):
        self.fail = fail
        self.rooms = []

    async def create_room(self, name):
        if self.fail:
            raise VideoRoomError("provider down")
        self.rooms.append(name)
        return f"https://telecare.daily.co/{name}"


@pytest.fixture(scope="function")
def db():
    """
    Create a fresh database with the plan catalog for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    ensure_default_plans(db)
    try:
        yield db
    finally:
        db.close()

    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def video():
    return FakeVideo()


@pytest.fixture
def failing_video():
    return FakeVideo(fail=True)


@pytest.fixture
def make_user(db):
    counter = {"n": 0}

    def _make_user(role=ROLE_PATIENT, plan=None, payment_customer_id="cus_test", started_days_ago=3):
        counter["n"] += 1
        user = User(
            email=f"{role}{counter['n']}@example.com",
            full_name=f"{role.title()} {counter['n']}",
            role=role,
            plan=plan,
            subscription_start_date=datetime.utcnow() - timedelta(days=started_days_ago),
            payment_customer_id=payment_customer_id,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def patient(make_user):
    return make_user(plan="basic")


@pytest.fixture
def admin(make_user):
    return make_user(role=ROLE_ADMIN, payment_customer_id=None)


@pytest.fixture
def make_doctor(db, make_user):
    def _make_doctor(fee=10000, available_for_emergency=True, status="approved"):
        user = make_user(role=ROLE_DOCTOR, payment_customer_id=None)
        doctor = Doctor(
            user_id=user.id,
            specialization="Cardiology",
            consultation_fee=fee,
            available_for_emergency=available_for_emergency,
            status=status,
        )
        db.add(doctor)
        db.commit()
        db.refresh(doctor)
        return doctor

    return _make_doctor


@pytest.fixture
def doctor(make_doctor):
    return make_doctor()


@pytest.fixture
def make_appointment(db):
    def _make_appointment(patient, doctor=None, is_emergency=False, status="scheduled", duration=30, **kwargs):
        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=doctor.id if doctor else None,
            scheduled_at=kwargs.pop("scheduled_at", datetime.utcnow() + timedelta(days=1)),
            duration=duration,
            type="emergency" if is_emergency else "telemedicine",
            status=status,
            is_emergency=is_emergency,
            payment_status=kwargs.pop("payment_status", "pending"),
            **kwargs,
        )
        db.add(appointment)
        db.commit()
        db.refresh(appointment)
        return appointment

    return _make_appointment


@pytest.fixture
def auth_headers():
    def _auth_headers(user):
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _auth_headers


@pytest.fixture(scope="function")
def client(db, gateway, video):
    """
    Create a test client with the test database session and fake collaborators.
    """

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    app.dependency_overrides[get_video_service] = lambda: video

    with TestClient(app) as client:
        yield client

    app.dependency_overrides = {}
