"""
Tests for payment initiation and verification routes

Paystack is replaced by an httpx.MockTransport attached through
app.state.paystack_service, so the real request bodies are exercised.
"""

import json
from decimal import Decimal
from unittest.mock import patch

import httpx
import pytest

from boinvit_settlement import models
from boinvit_settlement.domain.payments.paystack_service import PaystackService
from boinvit_settlement.domain.payments.repository import PaymentRepository

PAYSTACK_TEST_URL = "https://api.paystack.test"


class FakePaystack:
    """Records requests and answers with a canned response per path prefix"""

    def __init__(self):
        self.requests: list[httpx.Request] = []
        self.responses: dict[str, tuple[int, dict]] = {}

    def respond(self, path_prefix: str, status_code: int = 200, json_body=None):
        self.responses[path_prefix] = (status_code, json_body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        for prefix, (status_code, json_body) in self.responses.items():
            if request.url.path.startswith(prefix):
                return httpx.Response(status_code, json=json_body)
        body = json.loads(request.content or b"{}")
        return httpx.Response(
            200,
            json={
                "status": True,
                "message": "Authorization URL created",
                "data": {
                    "authorization_url": "https://checkout.paystack.test/abc",
                    "access_code": "ac_123",
                    "reference": body.get("reference"),
                    "status": "pay_offline",
                },
            },
        )

    @property
    def last_body(self) -> dict:
        return json.loads(self.requests[-1].content)


@pytest.fixture
def paystack(app):
    fake = FakePaystack()
    app.state.paystack_service = PaystackService(
        "sk_test_secret", base_url=PAYSTACK_TEST_URL, transport=httpx.MockTransport(fake.handler)
    )
    return fake


def _client_payment(**overrides):
    body = {
        "clientEmail": "Wanjiku@Example.com",
        "clientPhone": "0712345678",
        "businessId": "biz1",
        "amount": 1000,
        "bookingId": "B1",
    }
    body.update(overrides)
    return body


def _subscription_payment(**overrides):
    body = {
        "amount": 2500,
        "planId": "starter",
        "businessId": "biz1",
        "customerEmail": "owner@glowsalon.co.ke",
    }
    body.update(overrides)
    return body


class TestClientToBusinessInitiation:
    def test_card_checkout(self, client, db, business, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment())

        assert response.status_code == 200
        data = response.json()
        assert data["success"] is True
        assert data["authorization_url"] == "https://checkout.paystack.test/abc"
        assert data["access_code"] == "ac_123"
        assert data["payment_reference"].startswith("client-biz-")

        request = paystack.requests[-1]
        assert request.url.path == "/transaction/initialize"
        assert request.headers["authorization"] == "Bearer sk_test_secret"
        body = paystack.last_body
        assert body["amount"] == 100000
        assert body["currency"] == "KES"
        assert body["email"] == "wanjiku@example.com"
        assert body["callback_url"].endswith("/payment-success")
        assert body["metadata"]["payment_type"] == "client_to_business"
        assert body["metadata"]["platform_fee"] == "50.00"
        assert body["metadata"]["business_amount"] == "950.00"

        db.expire_all()
        row = db.query(models.ClientBusinessTransaction).one()
        assert row.status == "pending"
        assert row.booking_id == "B1"
        assert row.amount == Decimal("1000")
        assert row.platform_fee == Decimal("50")
        assert row.payment_reference == data["payment_reference"]

    def test_mpesa_prompt(self, client, db, business, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment(paymentMethod="mpesa"))

        assert response.status_code == 200
        assert "MPESA payment initiated" in response.json()["message"]

        assert paystack.requests[-1].url.path == "/charge"
        body = paystack.last_body
        assert body["mobile_money"] == {"phone": "254712345678", "provider": "mpesa"}
        assert body["amount"] == 100000

        db.expire_all()
        assert db.query(models.ClientBusinessTransaction).one().payment_method == "mpesa"

    def test_mpesa_without_phone_falls_back_to_card(self, client, business, paystack):
        response = client.post(
            "/payments/client-to-business", json=_client_payment(paymentMethod="mpesa", clientPhone=None)
        )

        assert response.status_code == 200
        assert paystack.requests[-1].url.path == "/transaction/initialize"

    def test_amount_above_maximum(self, client, business, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment(amount=70000))

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Amount exceeds maximum limit of KSh 65,000"}
        assert paystack.requests == []

    def test_amount_below_minimum(self, client, business, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment(amount=5))

        assert response.status_code == 400
        assert response.json()["error"] == "Minimum amount is KSh 10"
        assert paystack.requests == []

    def test_unknown_business(self, client, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment(businessId="nope"))

        assert response.status_code == 404
        assert paystack.requests == []

    def test_invalid_email_is_rejected_by_schema(self, client, business, paystack):
        response = client.post("/payments/client-to-business", json=_client_payment(clientEmail="nope"))

        assert response.status_code == 400
        assert response.json() == {"success": False, "error": "Invalid email format"}
        assert paystack.requests == []

    def test_missing_field_names_the_field(self, client, business, paystack):
        body = _client_payment()
        del body["bookingId"]

        response = client.post("/payments/client-to-business", json=body)

        assert response.status_code == 400
        assert response.json()["success"] is False
        assert response.json()["error"] == "bookingId: Field required"

    def test_provider_outage_writes_nothing(self, client, db, business, paystack):
        paystack.respond("/transaction/initialize", 500, {"status": False, "message": "Internal error"})

        response = client.post("/payments/client-to-business", json=_client_payment())

        assert response.status_code == 503
        assert response.json()["success"] is False
        db.expire_all()
        assert db.query(models.ClientBusinessTransaction).count() == 0

    def test_provider_declines_request(self, client, db, business, paystack):
        paystack.respond("/transaction/initialize", 200, {"status": False, "message": "Invalid email address"})

        response = client.post("/payments/client-to-business", json=_client_payment())

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid email address"
        db.expire_all()
        assert db.query(models.ClientBusinessTransaction).count() == 0

    def test_unreachable_provider(self, app, client, business):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        app.state.paystack_service = PaystackService(
            "sk_test_secret", base_url=PAYSTACK_TEST_URL, transport=httpx.MockTransport(refuse)
        )

        response = client.post("/payments/client-to-business", json=_client_payment())

        assert response.status_code == 503

    def test_checkout_is_returned_when_recording_fails(self, client, db, business, paystack):
        with patch.object(
            PaymentRepository, "create_client_transaction", side_effect=RuntimeError("database is locked")
        ):
            response = client.post("/payments/client-to-business", json=_client_payment())

        assert response.status_code == 200
        assert response.json()["authorization_url"] == "https://checkout.paystack.test/abc"
        db.expire_all()
        assert db.query(models.ClientBusinessTransaction).count() == 0


class TestSubscriptionInitiation:
    def test_card_subscription(self, client, db, business, paystack):
        response = client.post("/payments/subscription", json=_subscription_payment())

        assert response.status_code == 200
        data = response.json()
        assert data["reference"].startswith("boinvit-starter-")
        assert data["authorization_url"] == "https://checkout.paystack.test/abc"

        body = paystack.last_body
        assert body["amount"] == 250000
        assert body["metadata"] == {
            "plan_type": "starter",
            "business_id": "biz1",
            "provider": "card",
            "payment_type": "subscription",
        }

        db.expire_all()
        intent = db.query(models.PaymentIntent).one()
        assert intent.reference == data["reference"]
        assert intent.status == "pending"
        assert intent.plan_type == "starter"

    def test_airtel_subscription(self, client, business, paystack):
        response = client.post(
            "/payments/subscription", json=_subscription_payment(provider="airtel", phone="0733000111")
        )

        assert response.status_code == 200
        assert paystack.last_body["mobile_money"] == {"phone": "254733000111", "provider": "airtel"}

    def test_mobile_money_requires_phone(self, client, business, paystack):
        response = client.post("/payments/subscription", json=_subscription_payment(provider="mpesa"))

        assert response.status_code == 400
        assert paystack.requests == []

    def test_unknown_plan(self, client, business, paystack):
        response = client.post("/payments/subscription", json=_subscription_payment(planId="enterprise"))

        assert response.status_code == 400
        assert "enterprise" in response.json()["error"]
        assert paystack.requests == []


class TestVerification:
    def _verified(self, status="success", reference="ref_B1_001"):
        return {
            "status": True,
            "message": "Verification successful",
            "data": {
                "reference": reference,
                "amount": 100000,
                "currency": "KES",
                "status": status,
                "channel": "card",
                "paid_at": "2026-03-14T10:31:00.000Z",
                "metadata": {"business_id": "biz1", "booking_id": "B1", "payment_type": "client_to_business"},
            },
        }

    def test_successful_charge_is_settled_once(self, client, db, booking, paystack):
        paystack.respond("/transaction/verify/", 200, self._verified())

        first = client.get("/payments/verify/ref_B1_001")
        second = client.get("/payments/verify/ref_B1_001")

        assert first.status_code == 200
        assert first.json()["status"] == "success"
        assert first.json()["settlement"] == "completed"
        assert first.json()["transaction"]["amount"] == 100000
        assert second.json()["settlement"] == "duplicate"

        db.expire_all()
        assert db.get(models.Booking, "B1").status == "confirmed"
        assert db.query(models.PaymentTransaction).count() == 1

    def test_failed_charge_marks_pending_transaction(self, client, db, business, paystack):
        db.add(
            models.ClientBusinessTransaction(
                business_id="biz1",
                booking_id="B9",
                amount=Decimal("500.00"),
                platform_fee=Decimal("25.00"),
                business_amount=Decimal("475.00"),
                payment_reference="client-biz-1700000000000-abcdefghi",
                paystack_reference="client-biz-1700000000000-abcdefghi",
            )
        )
        db.commit()
        paystack.respond(
            "/transaction/verify/", 200, self._verified("failed", "client-biz-1700000000000-abcdefghi")
        )

        response = client.get("/payments/verify/client-biz-1700000000000-abcdefghi")

        assert response.status_code == 200
        assert response.json()["status"] == "failed"
        assert response.json()["settlement"] is None
        db.expire_all()
        assert db.query(models.ClientBusinessTransaction).one().status == "failed"

    def test_pending_charge(self, client, paystack):
        paystack.respond("/transaction/verify/", 200, self._verified("ongoing"))

        response = client.get("/payments/verify/ref_B1_001")

        assert response.json()["status"] == "pending"

    def test_invalid_reference_format(self, client, paystack):
        response = client.get("/payments/verify/bad.ref")

        assert response.status_code == 400
        assert response.json()["error"] == "Invalid payment reference format"
        assert paystack.requests == []
