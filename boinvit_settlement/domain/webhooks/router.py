"""
Paystack Webhook Handler
Verifies, validates and settles charge events
"""

import json
import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from ...config import SETTLEMENT_FAIL_ON_PARTIAL, ConfigurationError, load_payment_config
from ...database import get_db
from ...rate_limiter import RateLimiter, get_webhook_rate_limiter
from ...security_events import (
    BOOKING_NOT_FOUND,
    CONFIGURATION_ERROR,
    INVALID_BUSINESS_PAYMENT,
    INVALID_WEBHOOK_SIGNATURE,
    MISSING_WEBHOOK_SIGNATURE,
    WEBHOOK_ERROR,
    WEBHOOK_INVALID_JSON,
    WEBHOOK_RATE_LIMIT,
    WEBHOOK_VALIDATION_FAILED,
    SecurityEventLogger,
    get_security_logger,
)
from ...webhook_security import PAYSTACK_SIGNATURE_HEADER, get_client_ip, verify_paystack_signature
from .dispatcher import SettlementDispatcher
from .reconciler import (
    BookingNotFoundError,
    BusinessNotFoundError,
    InvalidMetadataError,
    InvalidPlanError,
    SettlementError,
)
from .schemas import validate_webhook_payload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks/paystack", tags=["webhooks"])


@router.post("")
async def handle_paystack_webhook(
    request: Request,
    db: Session = Depends(get_db),
    rate_limiter: RateLimiter = Depends(get_webhook_rate_limiter),
    security_logger: SecurityEventLogger = Depends(get_security_logger),
):
    """
    Handle Paystack webhook events

    Gates, in order: rate limit, configuration, signature, JSON, payload shape.
    No settlement write happens before every gate has passed.

    Events handled:
    - charge.success with payment_type client_to_business or subscription

    Any other event is acknowledged with 200 and recorded as unhandled.
    """
    client_ip = get_client_ip(request)

    try:
        if not rate_limiter.allow(client_ip):
            logger.warning(f"🚫 Webhook rate limit exceeded for {client_ip}")
            security_logger.log(
                WEBHOOK_RATE_LIMIT,
                "Webhook rate limit exceeded",
                {"ip": client_ip, "count": rate_limiter.current_count(client_ip)},
                severity="warning",
            )
            raise HTTPException(status_code=429, detail="Too many requests")

        try:
            config = load_payment_config()
        except ConfigurationError as e:
            logger.error(f"❌ {e}")
            security_logger.log(
                CONFIGURATION_ERROR,
                "Webhook configuration incomplete",
                {"missing": e.missing},
                severity="critical",
            )
            raise HTTPException(status_code=500, detail="Server configuration error") from None

        body = await request.body()
        signature = request.headers.get(PAYSTACK_SIGNATURE_HEADER)

        if not signature:
            logger.warning(f"🚫 Missing webhook signature from {client_ip}")
            security_logger.log(
                MISSING_WEBHOOK_SIGNATURE,
                "Webhook received without signature",
                {"ip": client_ip},
                severity="warning",
            )
            raise HTTPException(status_code=401, detail="Missing signature")

        if not verify_paystack_signature(body, signature, config.paystack_webhook_secret):
            logger.error(f"❌ Invalid webhook signature from {client_ip}")
            security_logger.log(
                INVALID_WEBHOOK_SIGNATURE,
                "Invalid webhook signature",
                {"ip": client_ip, "signature_prefix": signature[:10]},
                severity="error",
            )
            raise HTTPException(status_code=401, detail="Invalid signature")

        try:
            payload = json.loads(body.decode("utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError):
            logger.error("❌ Invalid JSON payload")
            security_logger.log(
                WEBHOOK_INVALID_JSON,
                "Webhook body is not valid JSON",
                {"ip": client_ip, "body_length": len(body)},
                severity="warning",
            )
            raise HTTPException(status_code=400, detail="Invalid JSON") from None

        validation = validate_webhook_payload(payload)
        if not validation.is_valid:
            logger.warning(f"⚠️ Webhook validation failed: {validation.errors}")
            security_logger.log(
                WEBHOOK_VALIDATION_FAILED,
                "Webhook payload validation failed",
                {"ip": client_ip, "errors": validation.errors},
                severity="warning",
            )
            raise HTTPException(
                status_code=400,
                detail={"error": "Invalid webhook payload", "details": validation.errors},
            )

        logger.info(f"📥 Received Paystack webhook: {payload['event']}")

        dispatcher = SettlementDispatcher(db, security_logger)
        try:
            result = dispatcher.dispatch(payload)
        except SettlementError as e:
            db.rollback()
            _log_settlement_rejection(security_logger, e, payload)
            raise HTTPException(status_code=e.status_code, detail=e.message) from None

        response = {"received": True, "status": "success"}
        if result.settlement is not None:
            response["settlement"] = result.settlement.status

        if result.is_partial and SETTLEMENT_FAIL_ON_PARTIAL:
            logger.warning(f"⚠️ Answering 500 so Paystack redelivers {result.settlement.reference}")
            raise HTTPException(status_code=500, detail="Settlement partially applied")

        return response

    except HTTPException:
        raise
    except Exception as e:
        db.rollback()
        logger.error(f"❌ Webhook processing error: {str(e)}")
        security_logger.log(
            WEBHOOK_ERROR,
            "Webhook processing failed",
            {"ip": client_ip, "error": str(e)},
            severity="error",
        )
        raise HTTPException(status_code=500, detail="Webhook processing failed") from None


def _log_settlement_rejection(
    security_logger: SecurityEventLogger, error: SettlementError, payload: dict
) -> None:
    metadata = payload.get("data", {}).get("metadata", {})
    details = {
        "reference": error.reference,
        "business_id": metadata.get("business_id"),
        "error": error.message,
    }

    if isinstance(error, BookingNotFoundError):
        details["booking_id"] = metadata.get("booking_id")
        security_logger.log(BOOKING_NOT_FOUND, "Payment references an unknown booking", details, "warning")
    elif isinstance(error, (BusinessNotFoundError, InvalidPlanError)):
        details["plan_type"] = metadata.get("plan_type")
        security_logger.log(INVALID_BUSINESS_PAYMENT, "Subscription payment rejected", details, "warning")
    elif isinstance(error, InvalidMetadataError):
        # Already recorded by the dispatcher
        return
    else:
        security_logger.log(WEBHOOK_ERROR, "Settlement rejected", details, "error")
