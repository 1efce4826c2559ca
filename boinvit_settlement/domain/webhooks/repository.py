"""Settlement repository - Database operations driven by payment webhooks"""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ...models import (
    Booking,
    Business,
    BusinessRevenue,
    Client,
    ClientBusinessTransaction,
    PaymentIntent,
    PaymentTransaction,
    SettlementRecord,
    Subscription,
)


class SettlementRepository:
    """Repository for settlement database operations"""

    # ------------------------------------------------------------------
    # Idempotency claim / step log
    # ------------------------------------------------------------------

    @staticmethod
    def get_settlement(db: Session, reference: str) -> Optional[SettlementRecord]:
        return db.query(SettlementRecord).filter(SettlementRecord.reference == reference).first()

    @staticmethod
    def claim_settlement(
        db: Session, reference: str, event_type: str, payment_type: str, payload: dict
    ) -> tuple[SettlementRecord, bool]:
        """
        Insert the settlement record for a reference.

        Returns (record, True) when this call created it, or the existing
        record and False when another delivery got there first.
        """
        record = SettlementRecord(
            reference=reference,
            event_type=event_type,
            payment_type=payment_type,
            status="processing",
            completed_steps=[],
            failed_steps=[],
            payload=payload,
            attempts=1,
        )
        db.add(record)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            existing = SettlementRepository.get_settlement(db, reference)
            if existing is None:
                raise
            return existing, False
        db.refresh(record)
        return record, True

    @staticmethod
    def reopen_settlement(
        db: Session, record: SettlementRecord, stale_before: datetime, now: datetime
    ) -> Optional[SettlementRecord]:
        """
        Take over a partial record, or one stuck in processing since before
        stale_before.

        The check and the takeover are one conditional UPDATE, so of two
        deliveries racing for the same record only one gets it back; the
        other gets None.
        """
        resumable = (SettlementRecord.status == "partial") | (
            (SettlementRecord.status == "processing")
            & (
                (SettlementRecord.updated_at < stale_before)
                | SettlementRecord.updated_at.is_(None)
            )
        )
        taken = (
            db.query(SettlementRecord)
            .filter(SettlementRecord.id == record.id, resumable)
            .update(
                {
                    SettlementRecord.status: "processing",
                    SettlementRecord.attempts: SettlementRecord.attempts + 1,
                    SettlementRecord.failed_steps: [],
                    SettlementRecord.updated_at: now,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        if taken != 1:
            return None
        db.refresh(record)
        return record

    @staticmethod
    def mark_step_completed(db: Session, record: SettlementRecord, step: str) -> None:
        """Commit the step's flushed writes together with its completed entry"""
        if step not in (record.completed_steps or []):
            record.completed_steps = [*(record.completed_steps or []), step]
        record.failed_steps = [s for s in (record.failed_steps or []) if s != step]
        db.commit()

    @staticmethod
    def mark_step_failed(db: Session, record: SettlementRecord, step: str, error: str) -> None:
        if step not in (record.failed_steps or []):
            record.failed_steps = [*(record.failed_steps or []), step]
        record.last_error = f"{step}: {error}"[:2000]
        db.commit()

    @staticmethod
    def finish_settlement(db: Session, record: SettlementRecord) -> SettlementRecord:
        record.status = "partial" if record.failed_steps else "completed"
        db.commit()
        db.refresh(record)
        return record

    @staticmethod
    def list_resumable(db: Session, stale_before: datetime, limit: int = 100) -> list[SettlementRecord]:
        """Partial settlements, and ones stuck in processing since before stale_before"""
        return (
            db.query(SettlementRecord)
            .filter(
                (SettlementRecord.status == "partial")
                | (
                    (SettlementRecord.status == "processing")
                    & (SettlementRecord.updated_at < stale_before)
                )
            )
            .order_by(SettlementRecord.created_at.asc())
            .limit(limit)
            .all()
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    @staticmethod
    def get_booking(db: Session, booking_id: str) -> Optional[Booking]:
        return db.query(Booking).filter(Booking.id == booking_id).first()

    @staticmethod
    def get_business(db: Session, business_id: str, active_only: bool = True) -> Optional[Business]:
        query = db.query(Business).filter(Business.id == business_id)
        if active_only:
            query = query.filter(Business.is_active.is_(True))
        return query.first()

    @staticmethod
    def get_client_transaction_for_booking(
        db: Session, booking_id: str
    ) -> Optional[ClientBusinessTransaction]:
        return (
            db.query(ClientBusinessTransaction)
            .filter(ClientBusinessTransaction.booking_id == booking_id)
            .order_by(ClientBusinessTransaction.created_at.desc())
            .first()
        )

    @staticmethod
    def get_client_transaction_by_reference(
        db: Session, reference: str
    ) -> Optional[ClientBusinessTransaction]:
        return (
            db.query(ClientBusinessTransaction)
            .filter(
                (ClientBusinessTransaction.paystack_reference == reference)
                | (ClientBusinessTransaction.payment_reference == reference)
            )
            .first()
        )

    @staticmethod
    def get_ledger_row(db: Session, reference: str) -> Optional[PaymentTransaction]:
        return (
            db.query(PaymentTransaction)
            .filter(PaymentTransaction.paystack_reference == reference)
            .first()
        )

    @staticmethod
    def find_client(db: Session, business_id: str, client_id: Optional[str], email: Optional[str]) -> Optional[Client]:
        """Client by id within the business, falling back to the booking email"""
        if client_id:
            client = (
                db.query(Client)
                .filter(Client.id == client_id, Client.business_id == business_id)
                .first()
            )
            if client:
                return client
        if email:
            return (
                db.query(Client)
                .filter(Client.business_id == business_id, Client.email == email.strip().lower())
                .first()
            )
        return None

    # ------------------------------------------------------------------
    # Writes
    # Flushed only; mark_step_completed commits them with the step entry.
    # ------------------------------------------------------------------

    @staticmethod
    def confirm_booking_payment(db: Session, booking: Booking, reference: str) -> Booking:
        """
        Forward-only transition: pending -> confirmed, payment pending/failed -> completed.
        A booking that already moved on keeps its status.
        """
        if booking.status == "pending":
            booking.status = "confirmed"
        if booking.payment_status in ("pending", "failed"):
            booking.payment_status = "completed"
        booking.payment_reference = reference
        booking.payment_method = booking.payment_method or "paystack"
        db.flush()
        return booking

    @staticmethod
    def complete_client_transaction(
        db: Session, transaction: ClientBusinessTransaction, reference: str
    ) -> ClientBusinessTransaction:
        transaction.status = "completed"
        transaction.paystack_reference = reference
        db.flush()
        return transaction

    @staticmethod
    def create_client_transaction(db: Session, **fields) -> ClientBusinessTransaction:
        transaction = ClientBusinessTransaction(**fields)
        db.add(transaction)
        db.flush()
        return transaction

    @staticmethod
    def insert_ledger_row(db: Session, **fields) -> PaymentTransaction:
        row = PaymentTransaction(**fields)
        db.add(row)
        db.flush()
        return row

    @staticmethod
    def increment_business_revenue(
        db: Session, business_id: str, amount: Decimal, platform_fee: Decimal, paid_at: datetime
    ) -> BusinessRevenue:
        revenue = db.query(BusinessRevenue).filter(BusinessRevenue.business_id == business_id).first()
        if revenue is None:
            revenue = BusinessRevenue(
                business_id=business_id,
                total_revenue=Decimal("0"),
                platform_fees=Decimal("0"),
                net_revenue=Decimal("0"),
                transaction_count=0,
            )
            db.add(revenue)

        revenue.total_revenue = Decimal(revenue.total_revenue or 0) + amount
        revenue.platform_fees = Decimal(revenue.platform_fees or 0) + platform_fee
        revenue.net_revenue = Decimal(revenue.net_revenue or 0) + (amount - platform_fee)
        revenue.transaction_count = (revenue.transaction_count or 0) + 1
        revenue.last_payment_at = paid_at
        db.flush()
        return revenue

    @staticmethod
    def record_client_spend(db: Session, client: Client, amount: Decimal, booked_at: datetime) -> Client:
        client.total_spent = Decimal(client.total_spent or 0) + amount
        client.status = "active"
        client.last_booking_date = booked_at
        db.flush()
        return client

    @staticmethod
    def create_client(db: Session, **fields) -> Client:
        client = Client(**fields)
        db.add(client)
        db.flush()
        return client

    @staticmethod
    def link_booking_client(db: Session, booking: Booking, client_id: str) -> None:
        if not booking.client_id:
            booking.client_id = client_id
            db.flush()

    @staticmethod
    def upsert_subscription(
        db: Session,
        business: Business,
        plan_type: str,
        staff_limit: Optional[int],
        bookings_limit: Optional[int],
        current_period_end: datetime,
        reference: str,
    ) -> Subscription:
        subscription = db.query(Subscription).filter(Subscription.business_id == business.id).first()
        if subscription is None:
            subscription = Subscription(business_id=business.id)
            db.add(subscription)

        subscription.user_id = business.user_id
        subscription.plan_type = plan_type
        subscription.status = "active"
        subscription.current_period_end = current_period_end
        subscription.staff_limit = staff_limit
        subscription.bookings_limit = bookings_limit
        subscription.paystack_reference = reference
        db.flush()
        return subscription

    @staticmethod
    def mark_payment_intent_paid(db: Session, reference: str, paid_at: datetime) -> Optional[PaymentIntent]:
        intent = db.query(PaymentIntent).filter(PaymentIntent.reference == reference).first()
        if intent is None:
            return None
        if intent.status != "paid":
            intent.status = "paid"
            intent.paid_at = paid_at
            db.flush()
        return intent
