"""Event dispatcher - routes a verified Paystack event to its settlement routine"""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from ...security_events import (
    DUPLICATE_WEBHOOK_IGNORED,
    INVALID_PAYMENT_METADATA,
    UNHANDLED_WEBHOOK_EVENT,
    SecurityEventLogger,
)
from .reconciler import InvalidMetadataError, SettlementOutcome, SettlementReconciler
from .schemas import (
    CLIENT_TO_BUSINESS,
    SUBSCRIPTION,
    ChargeSuccessEvent,
    decode_event,
    decode_metadata,
    describe_validation_error,
    resolve_payment_type,
)

logger = logging.getLogger(__name__)

SETTLED_PAYMENT_TYPES = (CLIENT_TO_BUSINESS, SUBSCRIPTION)


@dataclass
class DispatchResult:
    status: str  # settled, partial, duplicate, unhandled
    event_type: str
    settlement: Optional[SettlementOutcome] = None

    @property
    def is_partial(self) -> bool:
        return self.status == "partial"


class SettlementDispatcher:
    """Branches on event type, then on metadata.payment_type"""

    def __init__(
        self,
        db: Session,
        security_logger: SecurityEventLogger,
        reconciler: Optional[SettlementReconciler] = None,
    ):
        self.db = db
        self.security_logger = security_logger
        self.reconciler = reconciler or SettlementReconciler(db, security_logger)

    def dispatch(self, payload: dict[str, Any]) -> DispatchResult:
        """
        Dispatch a payload that already passed validate_webhook_payload.

        Raises InvalidMetadataError when a charge names a known payment type but
        lacks a field its settlement needs. SettlementError subclasses from the
        reconciler propagate unchanged.
        """
        event = decode_event(payload)

        if not isinstance(event, ChargeSuccessEvent):
            return self._unhandled(event.event, "Unhandled webhook event type", {"event": event.event})

        metadata = event.data.metadata
        reference = event.data.reference
        payment_type = resolve_payment_type(metadata)

        if payment_type not in SETTLED_PAYMENT_TYPES:
            return self._unhandled(
                event.event,
                "Unhandled payment type",
                {"event": event.event, "reference": reference, "payment_type": payment_type},
            )

        try:
            typed_metadata = decode_metadata(metadata, payment_type)
        except ValidationError as e:
            errors = describe_validation_error(e)
            logger.warning(f"⚠️ Invalid {payment_type} metadata for {reference}: {errors}")
            self.security_logger.log(
                INVALID_PAYMENT_METADATA,
                f"Invalid {payment_type} payment metadata",
                {"reference": reference, "errors": errors},
                severity="warning",
            )
            raise InvalidMetadataError(
                f"Invalid payment metadata: {'; '.join(errors)}", reference=reference
            ) from None

        logger.info(f"💰 Settling {payment_type} payment {reference}")
        outcome = self.reconciler.settle(event.event, event.data, typed_metadata, payload)

        if outcome.is_duplicate:
            self.security_logger.log(
                DUPLICATE_WEBHOOK_IGNORED,
                "Duplicate webhook delivery ignored",
                {"reference": reference, "payment_type": payment_type},
            )
            return DispatchResult(status="duplicate", event_type=event.event, settlement=outcome)

        status = "partial" if outcome.is_partial else "settled"
        return DispatchResult(status=status, event_type=event.event, settlement=outcome)

    def _unhandled(self, event_type: str, description: str, metadata: dict) -> DispatchResult:
        logger.info(f"ℹ️ {description}: {metadata}")
        self.security_logger.log(UNHANDLED_WEBHOOK_EVENT, description, metadata)
        return DispatchResult(status="unhandled", event_type=event_type)
