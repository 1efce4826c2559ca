"""Payments router - FastAPI endpoints for payment initiation and verification"""

import logging
import re

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ...config import ConfigurationError, load_payment_config
from ...database import get_db
from ...security_events import SecurityEventLogger, get_security_logger
from .paystack_service import PaymentProviderError, PaystackService
from .schemas import (
    ClientPaymentRequest,
    PaymentInitiationResponse,
    PaymentVerificationResponse,
    SubscriptionPaymentRequest,
)
from .service import PaymentService, PaymentValidationError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])

REFERENCE_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,128}$")


def get_paystack_service(request: Request) -> PaystackService:
    """Dependency injection for PaystackService; tests attach one to app.state"""
    service = getattr(request.app.state, "paystack_service", None)
    if service is not None:
        return service

    try:
        config = load_payment_config()
    except ConfigurationError as e:
        logger.error(f"❌ {e}")
        raise HTTPException(
            status_code=500, detail="Payment service configuration error. Please contact support."
        ) from None
    return PaystackService(config.paystack_secret_key, base_url=config.paystack_base_url)


def get_payment_service(
    db: Session = Depends(get_db),
    paystack: PaystackService = Depends(get_paystack_service),
    security_logger: SecurityEventLogger = Depends(get_security_logger),
) -> PaymentService:
    """Dependency injection for PaymentService"""
    return PaymentService(db, paystack, security_logger)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"success": False, "error": message})


# ============================================================================
# INITIATION
# ============================================================================


@router.post("/client-to-business", response_model=PaymentInitiationResponse)
async def initiate_client_payment(
    body: ClientPaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Start a client-to-business charge for a booking"""
    try:
        return await service.initiate_client_payment(body)
    except (PaymentValidationError, PaymentProviderError) as e:
        return _error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"❌ Client-to-business payment error: {e}")
        return _error_response(500, "An unexpected error occurred. Please try again later.")


@router.post("/subscription", response_model=PaymentInitiationResponse)
async def initiate_subscription_payment(
    body: SubscriptionPaymentRequest,
    service: PaymentService = Depends(get_payment_service),
):
    """Start a subscription charge for a business"""
    try:
        return await service.initiate_subscription_payment(body)
    except (PaymentValidationError, PaymentProviderError) as e:
        return _error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"❌ Subscription payment error: {e}")
        return _error_response(500, "An unexpected error occurred. Please try again later.")


# ============================================================================
# VERIFICATION
# ============================================================================


@router.get("/verify/{reference}", response_model=PaymentVerificationResponse)
async def verify_payment(
    reference: str,
    service: PaymentService = Depends(get_payment_service),
):
    """Check a charge with Paystack and settle it if it succeeded"""
    if not REFERENCE_PATTERN.match(reference):
        return _error_response(400, "Invalid payment reference format")

    try:
        return await service.verify_payment(reference)
    except PaymentProviderError as e:
        return _error_response(e.status_code, e.message)
    except Exception as e:
        logger.error(f"❌ Payment verification error for {reference}: {e}")
        return _error_response(500, "Status check failed")
