"""Payments repository - Database operations for payment initiation"""

from typing import Optional

from sqlalchemy.orm import Session

from ...models import Business, ClientBusinessTransaction, PaymentIntent


class PaymentRepository:
    """Repository for payment initiation database operations"""

    @staticmethod
    def get_active_business(db: Session, business_id: str) -> Optional[Business]:
        return (
            db.query(Business)
            .filter(Business.id == business_id, Business.is_active.is_(True))
            .first()
        )

    @staticmethod
    def create_client_transaction(db: Session, **fields) -> ClientBusinessTransaction:
        """Pending row that settlement completes once the charge succeeds"""
        transaction = ClientBusinessTransaction(status="pending", **fields)
        db.add(transaction)
        db.commit()
        db.refresh(transaction)
        return transaction

    @staticmethod
    def create_payment_intent(db: Session, **fields) -> PaymentIntent:
        intent = PaymentIntent(status="pending", **fields)
        db.add(intent)
        db.commit()
        db.refresh(intent)
        return intent

    @staticmethod
    def mark_reference_failed(db: Session, reference: str) -> int:
        """Flag still-pending initiation rows for a reference as failed; returns rows touched"""
        touched = 0
        transaction = (
            db.query(ClientBusinessTransaction)
            .filter(
                (ClientBusinessTransaction.paystack_reference == reference)
                | (ClientBusinessTransaction.payment_reference == reference)
            )
            .first()
        )
        if transaction and transaction.status == "pending":
            transaction.status = "failed"
            touched += 1

        intent = db.query(PaymentIntent).filter(PaymentIntent.reference == reference).first()
        if intent and intent.status == "pending":
            intent.status = "failed"
            touched += 1

        if touched:
            db.commit()
        return touched
