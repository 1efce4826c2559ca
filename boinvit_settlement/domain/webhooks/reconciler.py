"""
Settlement reconciler

Turns a verified charge.success into booking, transaction, ledger, revenue,
client and subscription state. Every provider reference is claimed once in
settlement_records; each step records its outcome there so a partially applied
settlement can be resumed by a redelivery or by the sweep job without
repeating the steps that already ran.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Callable, Optional, Union

from dateutil.relativedelta import relativedelta
from sqlalchemy.orm import Session

from ...config import SETTLEMENT_STALE_SECONDS
from ...models import Booking, Business, SettlementRecord
from ...plan_limits import get_plan_limits
from ...security_events import (
    CLIENT_PAYMENT_SUCCESS,
    SETTLEMENT_PARTIAL,
    WEBHOOK_PROCESSED_SUCCESS,
    SecurityEventLogger,
)
from ...shared.money import compute_fee_split
from ...shared.validators import validate_email
from .repository import SettlementRepository
from .schemas import (
    CLIENT_TO_BUSINESS,
    SUBSCRIPTION,
    ChargeData,
    ClientToBusinessMetadata,
    SubscriptionMetadata,
)

logger = logging.getLogger(__name__)

# Step names, in execution order
STEP_BOOKING = "booking"
STEP_CLIENT_TRANSACTION = "client_transaction"
STEP_LEDGER = "ledger"
STEP_REVENUE = "revenue"
STEP_CLIENT = "client"
STEP_SUBSCRIPTION = "subscription"
STEP_PAYMENT_INTENT = "payment_intent"

CLIENT_TO_BUSINESS_STEPS = (
    STEP_BOOKING,
    STEP_CLIENT_TRANSACTION,
    STEP_LEDGER,
    STEP_REVENUE,
    STEP_CLIENT,
)
SUBSCRIPTION_STEPS = (STEP_SUBSCRIPTION, STEP_LEDGER, STEP_PAYMENT_INTENT)


class SettlementError(Exception):
    """Settlement cannot start; nothing was written for the reference"""

    status_code = 500

    def __init__(self, message: str, reference: Optional[str] = None):
        self.message = message
        self.reference = reference
        super().__init__(message)


class BookingNotFoundError(SettlementError):
    status_code = 404


class BusinessNotFoundError(SettlementError):
    status_code = 404


class InvalidPlanError(SettlementError):
    status_code = 400


class InvalidMetadataError(SettlementError):
    status_code = 400


@dataclass
class SettlementOutcome:
    reference: str
    payment_type: str
    status: str  # completed, partial, duplicate
    completed_steps: list[str] = field(default_factory=list)
    failed_steps: list[str] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return self.status == "partial"

    @property
    def is_duplicate(self) -> bool:
        return self.status == "duplicate"


class SettlementReconciler:
    """
    Applies one successful charge.

    Lookups that decide whether settlement may start (booking, business, plan)
    run before the reference is claimed, so a 404/400 leaves no trace and a
    provider retry after the data is fixed settles normally.
    """

    def __init__(
        self,
        db: Session,
        security_logger: SecurityEventLogger,
        clock: Callable[[], datetime] = datetime.utcnow,
        stale_after_seconds: int = SETTLEMENT_STALE_SECONDS,
    ):
        self.db = db
        self.security_logger = security_logger
        self.clock = clock
        self.stale_after = timedelta(seconds=stale_after_seconds)

    def settle(
        self,
        event_type: str,
        charge: ChargeData,
        metadata: Union[ClientToBusinessMetadata, SubscriptionMetadata],
        payload: dict[str, Any],
    ) -> SettlementOutcome:
        existing = SettlementRepository.get_settlement(self.db, charge.reference)
        if existing is not None and existing.status == "completed":
            logger.info(f"🔁 Payment {charge.reference} already settled, ignoring redelivery")
            return SettlementOutcome(
                reference=existing.reference,
                payment_type=existing.payment_type,
                status="duplicate",
                completed_steps=list(existing.completed_steps or []),
            )

        if isinstance(metadata, ClientToBusinessMetadata):
            return self._settle_client_payment(event_type, charge, metadata, payload)
        return self._settle_subscription(event_type, charge, metadata, payload)

    # ------------------------------------------------------------------
    # Client-to-business path
    # ------------------------------------------------------------------

    def _settle_client_payment(
        self,
        event_type: str,
        charge: ChargeData,
        metadata: ClientToBusinessMetadata,
        payload: dict[str, Any],
    ) -> SettlementOutcome:
        reference = charge.reference
        booking = SettlementRepository.get_booking(self.db, metadata.booking_id)
        if not booking:
            logger.warning(f"⚠️ Booking {metadata.booking_id} not found for payment {reference}")
            raise BookingNotFoundError("Booking not found", reference=reference)
        # Everything is credited to the booking's business, whatever the metadata says
        business_id = booking.business_id
        if business_id != metadata.business_id:
            logger.warning(
                f"⚠️ Booking {booking.id} belongs to {business_id}, payment {reference} names {metadata.business_id}"
            )

        record = self._claim(reference, event_type, CLIENT_TO_BUSINESS, payload)
        if record is None:
            return SettlementOutcome(reference=reference, payment_type=CLIENT_TO_BUSINESS, status="duplicate")

        amount = charge.amount_major
        context: dict[str, Any] = {"platform_fee": None}

        def update_booking():
            SettlementRepository.confirm_booking_payment(self.db, booking, reference)

        def update_client_transaction():
            transaction = SettlementRepository.get_client_transaction_for_booking(self.db, booking.id)
            if transaction is None:
                transaction = SettlementRepository.get_client_transaction_by_reference(self.db, reference)

            if transaction is not None:
                SettlementRepository.complete_client_transaction(self.db, transaction, reference)
                context["platform_fee"] = transaction.platform_fee
                return

            # Initiation could not persist its row; rebuild it from the charge
            split = compute_fee_split(amount)
            logger.warning(f"⚠️ No client transaction for booking {booking.id}, creating one for {reference}")
            created = SettlementRepository.create_client_transaction(
                self.db,
                booking_id=booking.id,
                business_id=business_id,
                client_email=metadata.client_email or booking.client_email,
                client_phone=metadata.client_phone or booking.client_phone,
                amount=split.amount,
                platform_fee=split.platform_fee,
                business_amount=split.business_amount,
                payment_reference=reference,
                paystack_reference=reference,
                payment_method=charge.channel or "paystack",
                status="completed",
            )
            context["platform_fee"] = created.platform_fee

        def insert_ledger():
            if SettlementRepository.get_ledger_row(self.db, reference):
                logger.info(f"ℹ️ Ledger row for {reference} already exists")
                return
            SettlementRepository.insert_ledger_row(
                self.db,
                business_id=business_id,
                amount=amount,
                currency=charge.currency_code,
                status="completed",
                payment_method=charge.channel or "paystack",
                paystack_reference=reference,
                transaction_type=CLIENT_TO_BUSINESS,
                payment_metadata={
                    "booking_id": booking.id,
                    "client_id": metadata.client_id or booking.client_id,
                    "client_email": metadata.client_email or booking.client_email,
                },
            )

        def update_revenue():
            platform_fee = context["platform_fee"]
            if platform_fee is None:
                transaction = SettlementRepository.get_client_transaction_for_booking(self.db, booking.id)
                platform_fee = transaction.platform_fee if transaction else compute_fee_split(amount).platform_fee
            SettlementRepository.increment_business_revenue(
                self.db, business_id, amount, platform_fee, self.clock()
            )

        def upsert_client():
            self._upsert_client(booking, metadata, amount)

        steps = {
            STEP_BOOKING: update_booking,
            STEP_CLIENT_TRANSACTION: update_client_transaction,
            STEP_LEDGER: insert_ledger,
            STEP_REVENUE: update_revenue,
            STEP_CLIENT: upsert_client,
        }
        outcome = self._run_steps(record, CLIENT_TO_BUSINESS_STEPS, steps)

        if outcome.is_partial:
            self._log_partial(outcome)
        else:
            self.security_logger.log(
                CLIENT_PAYMENT_SUCCESS,
                "Client payment processed successfully",
                {
                    "reference": reference,
                    "amount": str(amount),
                    "booking_id": booking.id,
                    "business_id": business_id,
                },
            )
        return outcome

    def _upsert_client(self, booking: Booking, metadata: ClientToBusinessMetadata, amount) -> None:
        client_id = booking.client_id or metadata.client_id
        email = booking.client_email or metadata.client_email
        client = SettlementRepository.find_client(self.db, booking.business_id, client_id, email)

        if booking.date:
            booked_at = datetime.combine(booking.date, time.min)
        else:
            booked_at = self.clock()

        if client:
            SettlementRepository.record_client_spend(self.db, client, amount, booked_at)
            logger.info(f"✅ Client {client.id} total spend updated")
        else:
            try:
                normalized_email = validate_email(email)
            except ValueError:
                normalized_email = email.strip().lower() if email else None
            client = SettlementRepository.create_client(
                self.db,
                business_id=booking.business_id,
                name=booking.client_name or normalized_email or "Client",
                email=normalized_email,
                phone=booking.client_phone or metadata.client_phone,
                status="active",
                total_spent=amount,
                last_booking_date=booked_at,
            )
            logger.info(f"✅ Client {client.id} created from booking {booking.id}")

        SettlementRepository.link_booking_client(self.db, booking, client.id)

    # ------------------------------------------------------------------
    # Subscription path
    # ------------------------------------------------------------------

    def _settle_subscription(
        self,
        event_type: str,
        charge: ChargeData,
        metadata: SubscriptionMetadata,
        payload: dict[str, Any],
    ) -> SettlementOutcome:
        reference = charge.reference
        business: Optional[Business] = SettlementRepository.get_business(self.db, metadata.business_id)
        if not business:
            logger.warning(f"⚠️ Business {metadata.business_id} not found or inactive for {reference}")
            raise BusinessNotFoundError("Business not found or inactive", reference=reference)

        limits = get_plan_limits(metadata.plan_type)
        if limits is None:
            logger.warning(f"⚠️ Unknown plan type '{metadata.plan_type}' for {reference}")
            raise InvalidPlanError(f"Invalid plan type: {metadata.plan_type}", reference=reference)

        payment_type = SUBSCRIPTION
        record = self._claim(reference, event_type, payment_type, payload)
        if record is None:
            return SettlementOutcome(reference=reference, payment_type=payment_type, status="duplicate")

        amount = charge.amount_major

        def upsert_subscription():
            SettlementRepository.upsert_subscription(
                self.db,
                business,
                plan_type=metadata.plan_type.lower(),
                staff_limit=limits["staff_limit"],
                bookings_limit=limits["bookings_limit"],
                current_period_end=self.clock() + relativedelta(months=1),
                reference=reference,
            )

        def insert_ledger():
            if SettlementRepository.get_ledger_row(self.db, reference):
                logger.info(f"ℹ️ Ledger row for {reference} already exists")
                return
            SettlementRepository.insert_ledger_row(
                self.db,
                business_id=business.id,
                amount=amount,
                currency=charge.currency_code,
                status="completed",
                payment_method=charge.channel or "paystack",
                paystack_reference=reference,
                transaction_type=payment_type,
                payment_metadata={"plan_type": metadata.plan_type.lower()},
            )

        def mark_intent_paid():
            intent = SettlementRepository.mark_payment_intent_paid(self.db, reference, self.clock())
            if intent is None:
                logger.info(f"ℹ️ No payment intent recorded for {reference}")

        steps = {
            STEP_SUBSCRIPTION: upsert_subscription,
            STEP_LEDGER: insert_ledger,
            STEP_PAYMENT_INTENT: mark_intent_paid,
        }
        outcome = self._run_steps(record, SUBSCRIPTION_STEPS, steps)

        if outcome.is_partial:
            self._log_partial(outcome)
        else:
            self.security_logger.log(
                WEBHOOK_PROCESSED_SUCCESS,
                "Subscription payment processed successfully",
                {
                    "reference": reference,
                    "business_id": business.id,
                    "plan_type": metadata.plan_type,
                    "amount": str(amount),
                },
            )
        return outcome

    # ------------------------------------------------------------------
    # Claim / step log
    # ------------------------------------------------------------------

    def _claim(
        self, reference: str, event_type: str, payment_type: str, payload: dict[str, Any]
    ) -> Optional[SettlementRecord]:
        """
        Claim the reference for this delivery.

        Returns the record to work on, or None when the reference is already
        settled or another delivery is still working on it.
        """
        record, created = SettlementRepository.claim_settlement(
            self.db, reference, event_type, payment_type, payload
        )
        if created:
            return record

        if record.status == "completed":
            logger.info(f"🔁 Payment {reference} already settled, ignoring redelivery")
            return None

        now = self.clock()
        reopened = SettlementRepository.reopen_settlement(self.db, record, now - self.stale_after, now)
        if reopened is None:
            logger.info(f"🔁 Payment {reference} is being settled by another delivery")
            return None

        logger.info(
            f"🔄 Resuming settlement {reference} (attempt {reopened.attempts}, completed={reopened.completed_steps})"
        )
        return reopened

    def _run_steps(
        self, record: SettlementRecord, order: tuple[str, ...], steps: dict[str, Callable[[], None]]
    ) -> SettlementOutcome:
        """
        Run each step not yet completed; a failing step does not stop the ones after it.

        A step's writes and its completed_steps entry are committed together,
        so a step is either recorded as done or has left nothing behind.
        """
        completed_before = set(record.completed_steps or [])

        for name in order:
            if name in completed_before:
                continue
            try:
                steps[name]()
                SettlementRepository.mark_step_completed(self.db, record, name)
            except Exception as e:
                self.db.rollback()
                logger.error(f"❌ Settlement step '{name}' failed for {record.reference}: {e}")
                SettlementRepository.mark_step_failed(self.db, record, name, str(e))
                continue
            logger.info(f"✅ Settlement step '{name}' done for {record.reference}")

        record = SettlementRepository.finish_settlement(self.db, record)
        return SettlementOutcome(
            reference=record.reference,
            payment_type=record.payment_type,
            status=record.status,
            completed_steps=list(record.completed_steps or []),
            failed_steps=list(record.failed_steps or []),
        )

    def _log_partial(self, outcome: SettlementOutcome) -> None:
        logger.warning(
            f"⚠️ Settlement {outcome.reference} partially applied, failed steps: {outcome.failed_steps}"
        )
        self.security_logger.log(
            SETTLEMENT_PARTIAL,
            "Settlement partially applied",
            {
                "reference": outcome.reference,
                "payment_type": outcome.payment_type,
                "completed_steps": outcome.completed_steps,
                "failed_steps": outcome.failed_steps,
            },
            severity="warning",
        )
