import os

# Settings are read at import time, so the test environment must be in
# place before the application is imported.
os.environ["DATABASE_URL"] = "sqlite:///./test_reservations.db"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ALGORITHM"] = "HS256"
os.environ["ADMIN_AUTH_ENABLED"] = "true"
os.environ["STRIPE_SECRET_KEY"] = ""
os.environ["GOOGLE_CALENDAR_ID"] = ""

# Imports for testing tools
import datetime
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

# Import your application code
from reservation_service.main import app
from reservation_service.database import Base, get_db, get_session_factory
from reservation_service.config import settings
from reservation_service.calendar_sync import get_calendar_client
from reservation_service.payments import PaymentGatewayError, PaymentIntent, get_payment_gateway
from reservation_service import errors, models

# --- Test Database Setup ---
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_reservations.db"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False}
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


# --- Database Management Fixtures ---
@pytest.fixture(scope="session", autouse=True)
def setup_db():
    """Creates and drops the test database tables."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session():
    """Provides a clean database session for each test."""
    connection = engine.connect()
    transaction = connection.begin()
    session = TestingSessionLocal(bind=connection)
    yield session
    session.close()
    transaction.rollback()
    connection.close()


# --- Fake External Services ---
class FakePaymentGateway:
    """Stands in for Stripe. Every charge succeeds unless told otherwise."""

    def __init__(self):
        self.succeeded = True
        self.fail_verify = False
        self.fail_refund = False
        self.verified = []
        self.refunds = []
        self.intents = []

    def create_intent(self, amount, currency, metadata):
        intent = PaymentIntent(id=f"pi_test_{len(self.intents) + 1}", client_secret="secret_123")
        self.intents.append((amount, currency, metadata))
        return intent

    def verify_succeeded(self, payment_intent_id):
        self.verified.append(payment_intent_id)
        if self.fail_verify:
            raise PaymentGatewayError("Request timed out")
        return self.succeeded

    def refund(self, payment_intent_id):
        if self.fail_refund:
            raise PaymentGatewayError("Card issuer unavailable")
        self.refunds.append(payment_intent_id)
        return f"re_test_{len(self.refunds)}"


class FakeCalendarClient:
    """Stands in for Google Calendar and records what was synced."""

    def __init__(self):
        self.fail = False
        self.events = {}
        self.deleted = []

    def upsert_event(self, reservation):
        if self.fail:
            raise errors.CalendarSyncError("Calendar API is down")
        ref = reservation.external_calendar_ref or f"evt_{reservation.id}"
        self.events[ref] = reservation.status
        return ref

    def delete_event(self, ref):
        if self.fail:
            raise errors.CalendarSyncError("Calendar API is down")
        self.deleted.append(ref)
        self.events.pop(ref, None)


@pytest.fixture
def payment_gateway():
    return FakePaymentGateway()


@pytest.fixture
def calendar_client():
    return FakeCalendarClient()


# --- API Test Client Fixture ---
@pytest.fixture(scope="function")
def client(db_session, payment_gateway, calendar_client):
    """Provides a TestClient wired to the test session and fake collaborators."""
    def override_get_db():
        """Overrides the get_db dependency for tests."""
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    # Background calendar jobs share the test session so they see its rows
    app.dependency_overrides[get_session_factory] = lambda: lambda: db_session
    app.dependency_overrides[get_payment_gateway] = lambda: payment_gateway
    app.dependency_overrides[get_calendar_client] = lambda: calendar_client

    with TestClient(app) as c:
        yield c

    # Clean up overrides
    app.dependency_overrides.clear()


# --- Auth helpers ---
def create_test_token(subject: str = "owner", role: str = "admin") -> str:
    """Creates a simple admin JWT for testing."""
    payload = {"sub": subject, "role": role}
    token = jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return f"Bearer {token}"


@pytest.fixture
def admin_headers():
    return {"Authorization": create_test_token()}


# --- Data helpers ---
def make_reservation(
        check_in: datetime.date,
        check_out: datetime.date,
        listing_id: int = 1,
        status: models.ReservationStatus = models.ReservationStatus.PENDING,
        payment_status: models.PaymentStatus = models.PaymentStatus.PENDING,
        **overrides
) -> models.Reservation:
    """Builds (but does not save) a reservation with a plausible price snapshot."""
    nights = (check_out - check_in).days
    fields = dict(
        listing_id=listing_id,
        guest_name="Existing Guest",
        guest_email="existing@example.com",
        check_in=check_in,
        check_out=check_out,
        adults=2,
        nightly_rate=Decimal("300.00"),
        num_nights=nights,
        cleaning_fee=Decimal("199.00"),
        service_fee=Decimal("0.00"),
        tax=Decimal("0.00"),
        total_price=Decimal(300 * nights + 199),
        status=status,
        payment_status=payment_status,
    )
    fields.update(overrides)
    return models.Reservation(**fields)


@pytest.fixture
def add_reservation(db_session):
    """Saves a reservation directly, bypassing the lifecycle rules."""
    def _add(check_in, check_out, **kwargs):
        reservation = make_reservation(check_in, check_out, **kwargs)
        db_session.add(reservation)
        db_session.commit()
        db_session.refresh(reservation)
        return reservation
    return _add
