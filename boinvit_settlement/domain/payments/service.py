"""Payment service - Charge initiation and provider-side verification"""

import logging
import secrets
import time
from typing import Optional

from sqlalchemy.orm import Session

from ...config import (
    CLIENT_PAYMENT_MAX_AMOUNT,
    CLIENT_PAYMENT_MIN_AMOUNT,
    DEFAULT_CURRENCY,
    PAYMENT_CALLBACK_BASE_URL,
)
from ...plan_limits import get_plan_limits
from ...security_events import SecurityEventLogger
from ...shared.money import compute_fee_split, to_decimal, to_minor_units
from ...shared.validators import normalize_kenyan_phone
from ..webhooks.dispatcher import SettlementDispatcher
from ..webhooks.reconciler import SettlementError
from ..webhooks.schemas import CHARGE_SUCCESS, CLIENT_TO_BUSINESS, SUBSCRIPTION, validate_webhook_payload
from .paystack_service import PaystackService
from .repository import PaymentRepository
from .schemas import (
    MOBILE_MONEY_PROVIDERS,
    ClientPaymentRequest,
    PaymentInitiationResponse,
    PaymentVerificationResponse,
    SubscriptionPaymentRequest,
)

logger = logging.getLogger(__name__)

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class PaymentValidationError(Exception):
    """The initiation request is well-formed but not acceptable"""

    def __init__(self, message: str, status_code: int = 400):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _epoch_ms() -> int:
    return int(time.time() * 1000)


def generate_client_reference() -> str:
    """client-biz-<epoch ms>-<9 random base36 chars>"""
    suffix = "".join(secrets.choice(_BASE36) for _ in range(9))
    return f"client-biz-{_epoch_ms()}-{suffix}"


def generate_subscription_reference(plan_id: str) -> str:
    return f"boinvit-{plan_id}-{_epoch_ms()}"


def map_provider_status(status: Optional[str]) -> str:
    """Paystack transaction status to success / failed / pending"""
    if status == "success":
        return "success"
    if status in ("failed", "cancelled", "abandoned", "reversed"):
        return "failed"
    return "pending"


class PaymentService:
    """
    Starts charges with Paystack and records what settlement will complete.

    The provider call always runs first. If it fails nothing is written; if the
    write fails afterwards the checkout handle is still returned, since the
    payer can complete the charge and settlement rebuilds the missing row.
    """

    def __init__(
        self,
        db: Session,
        paystack: PaystackService,
        security_logger: Optional[SecurityEventLogger] = None,
        callback_base_url: str = PAYMENT_CALLBACK_BASE_URL,
    ):
        self.db = db
        self.paystack = paystack
        self.security_logger = security_logger or SecurityEventLogger()
        self.callback_base_url = callback_base_url.rstrip("/")
        self.repo = PaymentRepository()

    # ============================================================================
    # CLIENT TO BUSINESS
    # ============================================================================

    async def initiate_client_payment(self, request: ClientPaymentRequest) -> PaymentInitiationResponse:
        amount = to_decimal(request.amount)
        minimum = to_decimal(CLIENT_PAYMENT_MIN_AMOUNT)
        maximum = to_decimal(CLIENT_PAYMENT_MAX_AMOUNT)

        if amount > maximum:
            raise PaymentValidationError(f"Amount exceeds maximum limit of KSh {maximum:,}")
        if amount < minimum:
            raise PaymentValidationError(f"Minimum amount is KSh {minimum}")

        if not self.repo.get_active_business(self.db, request.business_id):
            raise PaymentValidationError("Business not found", status_code=404)

        split = compute_fee_split(amount)
        reference = generate_client_reference()
        metadata = {
            "business_id": request.business_id,
            "booking_id": request.booking_id,
            "client_email": request.client_email,
            "client_phone": request.client_phone,
            "payment_type": CLIENT_TO_BUSINESS,
            "platform_fee": str(split.platform_fee),
            "business_amount": str(split.business_amount),
        }
        logger.info(
            f"💰 Client payment {reference}: amount={split.amount} fee={split.platform_fee} business={split.business_amount}"
        )

        use_mobile_money = request.payment_method in MOBILE_MONEY_PROVIDERS and bool(request.client_phone)
        if use_mobile_money:
            data = await self.paystack.charge_mobile_money(
                email=request.client_email,
                amount_minor=to_minor_units(split.amount),
                currency=DEFAULT_CURRENCY,
                reference=reference,
                phone=normalize_kenyan_phone(request.client_phone),
                provider=request.payment_method,
                metadata=metadata,
            )
        else:
            data = await self.paystack.initialize_transaction(
                email=request.client_email,
                amount_minor=to_minor_units(split.amount),
                currency=DEFAULT_CURRENCY,
                reference=reference,
                callback_url=f"{self.callback_base_url}/payment-success",
                metadata=metadata,
            )

        provider_reference = data.get("reference") or reference

        try:
            self.repo.create_client_transaction(
                self.db,
                booking_id=request.booking_id,
                business_id=request.business_id,
                client_email=request.client_email,
                client_phone=request.client_phone,
                amount=split.amount,
                platform_fee=split.platform_fee,
                business_amount=split.business_amount,
                payment_reference=reference,
                paystack_reference=provider_reference,
                payment_method=request.payment_method,
            )
            logger.info(f"✅ Pending client transaction recorded for {reference}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record client transaction {reference}: {e}")

        if use_mobile_money:
            return PaymentInitiationResponse(
                reference=provider_reference,
                payment_reference=reference,
                status=data.get("status"),
                message=f"{request.payment_method.upper()} payment initiated. Check your phone for the payment prompt.",
            )

        return PaymentInitiationResponse(
            reference=provider_reference,
            authorization_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
            payment_reference=reference,
        )

    # ============================================================================
    # SUBSCRIPTIONS
    # ============================================================================

    async def initiate_subscription_payment(
        self, request: SubscriptionPaymentRequest
    ) -> PaymentInitiationResponse:
        plan_type = request.plan_id.lower()
        if get_plan_limits(plan_type) is None:
            raise PaymentValidationError(f"Invalid plan type: {request.plan_id}")

        if not self.repo.get_active_business(self.db, request.business_id):
            raise PaymentValidationError("Business not found", status_code=404)

        if request.provider in MOBILE_MONEY_PROVIDERS and not request.phone:
            raise PaymentValidationError("Phone number is required for mobile money payments")

        amount = to_decimal(request.amount)
        reference = generate_subscription_reference(plan_type)
        metadata = {
            "plan_type": plan_type,
            "business_id": request.business_id,
            "provider": request.provider,
            "payment_type": SUBSCRIPTION,
        }

        if request.provider in MOBILE_MONEY_PROVIDERS:
            data = await self.paystack.charge_mobile_money(
                email=request.customer_email,
                amount_minor=to_minor_units(amount),
                currency=request.currency,
                reference=reference,
                phone=normalize_kenyan_phone(request.phone),
                provider=request.provider,
                metadata=metadata,
            )
        else:
            data = await self.paystack.initialize_transaction(
                email=request.customer_email,
                amount_minor=to_minor_units(amount),
                currency=request.currency,
                reference=reference,
                callback_url=f"{self.callback_base_url}/payment-success",
                metadata=metadata,
            )

        provider_reference = data.get("reference") or reference

        try:
            self.repo.create_payment_intent(
                self.db,
                business_id=request.business_id,
                reference=provider_reference,
                purpose=SUBSCRIPTION,
                plan_type=plan_type,
                provider=request.provider,
                amount=amount,
                currency=request.currency,
                meta={"phone": request.phone, "plan_id": request.plan_id},
            )
            logger.info(f"✅ Subscription payment intent recorded for {provider_reference}")
        except Exception as e:
            self.db.rollback()
            logger.error(f"❌ Failed to record payment intent {provider_reference}: {e}")

        return PaymentInitiationResponse(
            reference=provider_reference,
            authorization_url=data.get("authorization_url"),
            access_code=data.get("access_code"),
            status=data.get("status"),
            message=f"{request.provider.upper()} payment initiated successfully",
        )

    # ============================================================================
    # VERIFICATION
    # ============================================================================

    async def verify_payment(self, reference: str) -> PaymentVerificationResponse:
        """
        Ask Paystack for the charge state. A successful charge goes through the
        same idempotent settlement as the webhook, so a lost webhook is recovered
        here and a delivered one is not applied twice.
        """
        transaction = await self.paystack.verify_transaction(reference)
        status = map_provider_status(transaction.get("status"))
        settlement: Optional[str] = None

        if status == "success":
            settlement = self._settle_verified(reference, transaction)
        elif status == "failed":
            if self.repo.mark_reference_failed(self.db, reference):
                logger.info(f"ℹ️ Payment {reference} marked failed")

        return PaymentVerificationResponse(
            reference=transaction.get("reference") or reference,
            status=status,
            settlement=settlement,
            transaction={
                "reference": transaction.get("reference") or reference,
                "amount": transaction.get("amount"),
                "currency": transaction.get("currency"),
                "status": transaction.get("status"),
                "channel": transaction.get("channel"),
                "paid_at": transaction.get("paid_at"),
            },
        )

    def _settle_verified(self, reference: str, transaction: dict) -> str:
        payload = {
            "event": CHARGE_SUCCESS,
            "data": {**transaction, "reference": transaction.get("reference") or reference},
        }
        validation = validate_webhook_payload(payload)
        if not validation.is_valid:
            logger.warning(f"⚠️ Verified payment {reference} cannot be settled: {validation.errors}")
            return "skipped"

        dispatcher = SettlementDispatcher(self.db, self.security_logger)
        try:
            result = dispatcher.dispatch(payload)
        except SettlementError as e:
            self.db.rollback()
            logger.warning(f"⚠️ Verified payment {reference} rejected by settlement: {e.message}")
            return "rejected"

        if result.settlement is None:
            return "skipped"
        return result.settlement.status
