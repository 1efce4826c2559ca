"""
Tests for webhook payload validation and typed decoding
"""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from boinvit_settlement.domain.webhooks.schemas import (
    ChargeSuccessEvent,
    ClientToBusinessMetadata,
    OtherEvent,
    SubscriptionMetadata,
    decode_event,
    decode_metadata,
    describe_validation_error,
    resolve_payment_type,
    validate_webhook_payload,
)
from conftest import charge_success_payload


class TestValidateWebhookPayload:
    def test_valid_charge_success(self):
        result = validate_webhook_payload(charge_success_payload())
        assert result.is_valid is True
        assert result.errors == []

    @pytest.mark.parametrize("payload", [None, [], "charge.success", 42])
    def test_non_object_body(self, payload):
        result = validate_webhook_payload(payload)
        assert result.is_valid is False
        assert result.errors == ["Invalid request body"]

    def test_missing_event_and_data(self):
        result = validate_webhook_payload({})
        assert "Missing or invalid event type" in result.errors
        assert "Missing or invalid event data" in result.errors

    def test_event_with_illegal_characters(self):
        result = validate_webhook_payload({"event": "charge;drop", "data": {}})
        assert result.errors == ["Invalid event type format"]

    def test_non_charge_event_only_needs_event_and_data(self):
        result = validate_webhook_payload({"event": "transfer.success", "data": {"id": 1}})
        assert result.is_valid is True

    def test_missing_metadata(self):
        payload = charge_success_payload()
        del payload["data"]["metadata"]
        result = validate_webhook_payload(payload)
        assert result.errors == ["Missing payment metadata"]

    def test_metadata_must_be_an_object(self):
        payload = charge_success_payload()
        payload["data"]["metadata"] = "booking=B1"
        assert validate_webhook_payload(payload).errors == ["Missing payment metadata"]

    def test_missing_reference(self):
        payload = charge_success_payload()
        del payload["data"]["reference"]
        assert validate_webhook_payload(payload).errors == ["Missing payment reference"]

    def test_reference_format(self):
        payload = charge_success_payload(reference="ref with spaces")
        assert validate_webhook_payload(payload).errors == ["Invalid payment reference format"]

    @pytest.mark.parametrize("amount", [None, "100000", 0, -5, True])
    def test_invalid_amount(self, amount):
        payload = charge_success_payload(amount=amount)
        assert validate_webhook_payload(payload).errors == ["Missing or invalid amount"]

    def test_collects_every_error(self):
        payload = {"event": "charge.success", "data": {"amount": "x"}}
        result = validate_webhook_payload(payload)
        assert result.errors == [
            "Missing payment reference",
            "Missing payment metadata",
            "Missing or invalid amount",
        ]


class TestDecoding:
    def test_charge_success_decodes_to_typed_event(self):
        event = decode_event(charge_success_payload(amount=123456))
        assert isinstance(event, ChargeSuccessEvent)
        assert event.data.amount_major == Decimal("1234.56")
        assert event.data.currency_code == "KES"

    def test_other_events_decode_generically(self):
        event = decode_event({"event": "transfer.success", "data": {}})
        assert isinstance(event, OtherEvent)

    def test_currency_defaults_to_kes(self):
        event = decode_event(charge_success_payload(currency=None))
        assert event.data.currency_code == "KES"

    def test_client_to_business_metadata(self):
        metadata = decode_metadata({"business_id": "biz1", "booking_id": "B1"}, "client_to_business")
        assert isinstance(metadata, ClientToBusinessMetadata)
        assert metadata.booking_id == "B1"

    def test_subscription_metadata(self):
        metadata = decode_metadata({"business_id": "biz1", "plan_type": "starter"}, "subscription")
        assert isinstance(metadata, SubscriptionMetadata)

    def test_client_metadata_requires_booking(self):
        with pytest.raises(ValidationError) as exc_info:
            decode_metadata({"business_id": "biz1"}, "client_to_business")
        assert any("booking_id" in message for message in describe_validation_error(exc_info.value))

    def test_subscription_metadata_requires_plan(self):
        with pytest.raises(ValidationError):
            decode_metadata({"business_id": "biz1", "plan_type": ""}, "subscription")


class TestResolvePaymentType:
    def test_explicit_payment_type(self):
        assert resolve_payment_type({"payment_type": "subscription"}) == "subscription"

    def test_plan_type_implies_subscription(self):
        assert resolve_payment_type({"plan_type": "medium"}) == "subscription"

    def test_booking_implies_client_payment(self):
        assert resolve_payment_type({"booking_id": "B1"}) == "client_to_business"

    def test_unknown(self):
        assert resolve_payment_type({"business_id": "biz1"}) is None
