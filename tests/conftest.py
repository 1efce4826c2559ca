"""
Shared fixtures for the settlement service tests

The database is a temporary SQLite file for the whole session; tables are
recreated for every test. Settings are placed in the environment before the
package is imported so the engine binds to the test database.
"""

import json
import os
import tempfile
from datetime import date
from decimal import Decimal

import pytest

_TEST_DB_DIR = tempfile.mkdtemp(prefix="boinvit-settlement-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TEST_DB_DIR, 'test.db')}"
os.environ["PAYSTACK_SECRET_KEY"] = "sk_test_secret"
os.environ["PAYSTACK_WEBHOOK_SECRET"] = "whsec_test_secret"
os.environ["RATE_LIMIT_BACKEND"] = "memory"
os.environ["DB_LOG_SLOW_QUERIES"] = "false"

from fastapi.testclient import TestClient  # noqa: E402

from boinvit_settlement import models  # noqa: E402
from boinvit_settlement.cache import cache  # noqa: E402
from boinvit_settlement.database import Base, SessionLocal, engine  # noqa: E402
from boinvit_settlement.rate_limiter import InMemoryRateLimiter  # noqa: E402
from boinvit_settlement.security_events import SecurityEventLogger  # noqa: E402
from boinvit_settlement.webhook_security import compute_hmac_sha512  # noqa: E402

WEBHOOK_SECRET = os.environ["PAYSTACK_WEBHOOK_SECRET"]
WEBHOOK_PATH = "/webhooks/paystack"


@pytest.fixture(autouse=True)
def reset_database():
    """Fresh tables for every test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield


@pytest.fixture(autouse=True)
def no_redis(monkeypatch):
    """Keep tests off any Redis that happens to be running locally"""
    monkeypatch.setattr(cache, "_get_client", lambda: None)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def security_logger():
    return SecurityEventLogger()


@pytest.fixture
def app():
    from boinvit_settlement.main import app as fastapi_app

    fastapi_app.state.webhook_rate_limiter = InMemoryRateLimiter()
    fastapi_app.state.security_logger = SecurityEventLogger()
    yield fastapi_app
    if hasattr(fastapi_app.state, "paystack_service"):
        del fastapi_app.state.paystack_service


@pytest.fixture
def client(app):
    return TestClient(app)


# ============================================================================
# FACTORIES
# ============================================================================


@pytest.fixture
def business(db):
    row = models.Business(id="biz1", user_id="owner-1", name="Glow Salon", is_active=True)
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def customer(db, business):
    row = models.Client(
        id="C1",
        business_id=business.id,
        name="Wanjiku Kamau",
        email="wanjiku@example.com",
        phone="0712345678",
        status="inactive",
        total_spent=Decimal("250.00"),
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def booking(db, business, customer):
    row = models.Booking(
        id="B1",
        business_id=business.id,
        client_id=customer.id,
        service_id="S1",
        date=date(2026, 3, 14),
        time="10:30",
        client_name=customer.name,
        client_email=customer.email,
        client_phone=customer.phone,
        status="pending",
        payment_status="pending",
        total_amount=Decimal("1000.00"),
    )
    db.add(row)
    db.commit()
    return row


# ============================================================================
# HELPERS
# ============================================================================


def charge_success_payload(reference="ref_B1_001", amount=100000, metadata=None, **data):
    """charge.success envelope as Paystack sends it (amount in minor units)"""
    if metadata is None:
        metadata = {
            "business_id": "biz1",
            "booking_id": "B1",
            "payment_type": "client_to_business",
        }
    return {
        "event": "charge.success",
        "data": {
            "reference": reference,
            "amount": amount,
            "currency": "KES",
            "status": "success",
            "channel": "card",
            "metadata": metadata,
            **data,
        },
    }


def subscription_payload(reference="boinvit-starter-1700000000000", plan_type="starter", amount=250000):
    return charge_success_payload(
        reference=reference,
        amount=amount,
        metadata={"business_id": "biz1", "plan_type": plan_type, "payment_type": "subscription"},
    )


def sign(body: bytes, secret: str = WEBHOOK_SECRET) -> str:
    return compute_hmac_sha512(secret, body)


def post_webhook(client, payload, signature=None, headers=None):
    body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
    request_headers = {"content-type": "application/json"}
    if signature is not False:
        request_headers["x-paystack-signature"] = signature or sign(body)
    request_headers.update(headers or {})
    return client.post(WEBHOOK_PATH, content=body, headers=request_headers)


def security_event_types(session):
    session.expire_all()
    return [e.event_type for e in session.query(models.SecurityEvent).order_by(models.SecurityEvent.id).all()]
