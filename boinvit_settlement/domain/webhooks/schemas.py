"""Webhook schemas - payload validation and typed decoding of Paystack events"""

import re
from decimal import Decimal
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from ...shared.money import from_minor_units

CHARGE_SUCCESS = "charge.success"

CLIENT_TO_BUSINESS = "client_to_business"
SUBSCRIPTION = "subscription"

EVENT_PATTERN = re.compile(r"^[a-zA-Z_.]+$")
REFERENCE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")


class ValidationResult(BaseModel):
    is_valid: bool
    errors: list[str] = []


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_webhook_payload(payload: Any) -> ValidationResult:
    """
    Shape-check a decoded webhook body before anything acts on it.

    Top level must be an object with a string `event` and an object `data`.
    charge.success additionally needs data.reference (string), data.metadata
    (object) and a positive numeric data.amount.
    """
    errors: list[str] = []

    if not isinstance(payload, dict):
        return ValidationResult(is_valid=False, errors=["Invalid request body"])

    event = payload.get("event")
    if not isinstance(event, str) or not event:
        errors.append("Missing or invalid event type")
    elif not EVENT_PATTERN.match(event):
        errors.append("Invalid event type format")

    data = payload.get("data")
    if not isinstance(data, dict):
        errors.append("Missing or invalid event data")

    if event == CHARGE_SUCCESS and isinstance(data, dict):
        reference = data.get("reference")
        if not isinstance(reference, str) or not reference:
            errors.append("Missing payment reference")
        elif not REFERENCE_PATTERN.match(reference):
            errors.append("Invalid payment reference format")

        if not isinstance(data.get("metadata"), dict):
            errors.append("Missing payment metadata")

        amount = data.get("amount")
        if not _is_number(amount) or amount <= 0:
            errors.append("Missing or invalid amount")

    return ValidationResult(is_valid=not errors, errors=errors)


# ============================================================================
# TYPED EVENTS
# ============================================================================


class ChargeData(BaseModel):
    """data object of a charge.success event; amount is in minor units"""

    model_config = ConfigDict(extra="allow")

    reference: str
    amount: Union[int, float]
    metadata: dict[str, Any]
    currency: Optional[str] = None
    status: Optional[str] = None
    channel: Optional[str] = None

    @property
    def amount_major(self) -> Decimal:
        return from_minor_units(self.amount)

    @property
    def currency_code(self) -> str:
        return (self.currency or "KES").upper()


class ChargeSuccessEvent(BaseModel):
    event: Literal["charge.success"]
    data: ChargeData


class OtherEvent(BaseModel):
    """Any event the dispatcher has no settlement routine for"""

    event: str
    data: dict[str, Any]


class ClientToBusinessMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_type: Literal["client_to_business"]
    business_id: str = Field(min_length=1)
    booking_id: str = Field(min_length=1)
    client_id: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None


class SubscriptionMetadata(BaseModel):
    model_config = ConfigDict(extra="allow")

    payment_type: Literal["subscription"]
    business_id: str = Field(min_length=1)
    plan_type: str = Field(min_length=1)


SettlementMetadata = Annotated[
    Union[ClientToBusinessMetadata, SubscriptionMetadata], Field(discriminator="payment_type")
]

_metadata_adapter = TypeAdapter(SettlementMetadata)


def decode_event(payload: dict) -> Union[ChargeSuccessEvent, OtherEvent]:
    """Decode a payload that already passed validate_webhook_payload"""
    if payload.get("event") == CHARGE_SUCCESS:
        return ChargeSuccessEvent.model_validate(payload)
    return OtherEvent.model_validate(payload)


def resolve_payment_type(metadata: dict) -> Optional[str]:
    """payment_type as sent, or inferred for checkouts created before it was always set"""
    payment_type = metadata.get("payment_type")
    if payment_type:
        return payment_type
    if metadata.get("plan_type"):
        return SUBSCRIPTION
    if metadata.get("booking_id"):
        return CLIENT_TO_BUSINESS
    return None


def decode_metadata(
    metadata: dict, payment_type: str
) -> Union[ClientToBusinessMetadata, SubscriptionMetadata]:
    """
    Decode settlement metadata for a known payment type.

    Raises pydantic.ValidationError when a field the settlement path needs is
    missing or malformed.
    """
    return _metadata_adapter.validate_python({**metadata, "payment_type": payment_type})


def describe_validation_error(exc: ValidationError) -> list[str]:
    return [
        f"{'.'.join(str(part) for part in err['loc'][1:] or err['loc'])}: {err['msg']}"
        for err in exc.errors()
    ]
