"""
Pytest configuration and fixtures.
"""
import hashlib
import hmac
import json
import os
import time
from datetime import datetime
from typing import Any, Callable, Dict, Generator

# Must be set before the application settings are first loaded
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test_secret")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from donation_ledger.database import Base, get_db
from donation_ledger.main import app
from donation_ledger.services.payment_record import PaymentRecord

WEBHOOK_SECRET = os.environ["STRIPE_WEBHOOK_SECRET"]

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test."""
    from donation_ledger import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """Create a test client with database override."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def make_record() -> Callable[..., PaymentRecord]:
    """Factory for succeeded payment records with overridable fields."""

    def _make(**overrides: Any) -> PaymentRecord:
        fields: Dict[str, Any] = {
            "amount_cents": 5000,
            "occurred_at": datetime(2024, 3, 1, 12, 0, 0),
            "charge_id": "ch_1",
            "transaction_status": "succeeded",
            "payer_name": "Jane Doe",
            "payer_email": "jane@example.com",
            "description_text": "$50 - General Monthly Donation",
            "customer_id": "cus_1",
            "source": "test",
        }
        fields.update(overrides)
        return PaymentRecord(**fields)

    return _make


def sign_payload(payload: str, secret: str = WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header the way Stripe signs deliveries."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


def stripe_event(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1") -> str:
    """Serialize a minimal Stripe event envelope."""
    return json.dumps({
        "id": event_id,
        "object": "event",
        "type": event_type,
        "data": {"object": obj},
    })


@pytest.fixture
def sign() -> Callable[..., str]:
    """Signs a raw payload string; for hand-built or stale deliveries."""
    return sign_payload


@pytest.fixture
def stripe_delivery() -> Callable[..., tuple]:
    """Factory for signed webhook deliveries: returns (body bytes, signature header)."""

    def _deliver(event_type: str, obj: Dict[str, Any], event_id: str = "evt_1", secret: str = WEBHOOK_SECRET):
        payload = stripe_event(event_type, obj, event_id)
        return payload.encode("utf-8"), sign_payload(payload, secret)

    return _deliver


@pytest.fixture(autouse=True)
def reset_singletons():
    """Reset global singleton instances before each test for proper isolation."""
    import donation_ledger.services.description_classifier as classifier_module

    classifier_module._classifier_instance = None
    yield
    classifier_module._classifier_instance = None
