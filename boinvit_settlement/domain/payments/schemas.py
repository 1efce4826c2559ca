"""Payments domain schemas - Pydantic models for validation"""

from decimal import Decimal
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ...shared.validators import validate_email

CARD_METHODS = {"paystack", "card"}
MOBILE_MONEY_PROVIDERS = {"mpesa", "airtel"}


class ClientPaymentRequest(BaseModel):
    """Schema for a client paying a business for a booking"""

    model_config = ConfigDict(populate_by_name=True)

    client_email: str = Field(alias="clientEmail")
    client_phone: Optional[str] = Field(default=None, alias="clientPhone")
    business_id: str = Field(alias="businessId", min_length=1)
    amount: Decimal
    booking_id: str = Field(alias="bookingId", min_length=1)
    payment_method: str = Field(default="paystack", alias="paymentMethod")

    @field_validator("client_email")
    @classmethod
    def validate_client_email(cls, v: str) -> str:
        if not v:
            raise ValueError("Client email is required")
        return validate_email(v)

    @field_validator("payment_method")
    @classmethod
    def validate_payment_method(cls, v: str) -> str:
        method = (v or "paystack").strip().lower()
        if method not in CARD_METHODS | MOBILE_MONEY_PROVIDERS:
            raise ValueError("paymentMethod must be one of paystack, card, mpesa, airtel")
        return method


class SubscriptionPaymentRequest(BaseModel):
    """Schema for a business buying a plan"""

    model_config = ConfigDict(populate_by_name=True)

    phone: Optional[str] = None
    amount: Decimal = Field(gt=0)
    plan_id: str = Field(alias="planId", min_length=1)
    business_id: str = Field(alias="businessId", min_length=1)
    customer_email: str = Field(alias="customerEmail")
    provider: Literal["mpesa", "airtel", "card"] = "card"
    currency: str = "KES"

    @field_validator("customer_email")
    @classmethod
    def validate_customer_email(cls, v: str) -> str:
        if not v:
            raise ValueError("Customer email is required")
        return validate_email(v)

    @field_validator("currency")
    @classmethod
    def validate_currency(cls, v: str) -> str:
        code = (v or "KES").strip().upper()
        if len(code) != 3 or not code.isalpha():
            raise ValueError("currency must be a 3-letter code")
        return code


class PaymentInitiationResponse(BaseModel):
    """Schema for payment initiation response"""

    success: bool = True
    reference: str
    authorization_url: Optional[str] = None
    access_code: Optional[str] = None
    payment_reference: Optional[str] = None
    status: Optional[str] = None
    message: Optional[str] = None


class PaymentVerificationResponse(BaseModel):
    """Schema for payment verification response"""

    success: bool = True
    reference: str
    status: str  # success, failed, pending
    settlement: Optional[str] = None
    transaction: dict[str, Any] = {}
