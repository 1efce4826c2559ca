import uuid
from datetime import datetime

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)

from .database import Base


def generate_id():
    """Generate a string primary key"""
    return str(uuid.uuid4())


class Business(Base):
    __tablename__ = "businesses"

    id = Column(String(64), primary_key=True, default=generate_id)
    user_id = Column(String(64), nullable=True, index=True)  # Owner account in the auth provider
    name = Column(String(255), nullable=False, default="")
    is_active = Column(Boolean, default=True, nullable=False)
    paystack_subaccount_code = Column(String(100), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Booking(Base):
    __tablename__ = "bookings"

    id = Column(String(64), primary_key=True, default=generate_id)
    business_id = Column(String(64), ForeignKey("businesses.id"), nullable=False, index=True)
    client_id = Column(String(64), nullable=True, index=True)
    service_id = Column(String(64), nullable=True)
    date = Column(Date, nullable=True)
    time = Column(String(10), nullable=True)  # HH:MM
    # Denormalized client details captured by the booking wizard
    client_name = Column(String(255), nullable=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    status = Column(String(20), default="pending", nullable=False)  # pending, confirmed, cancelled, completed
    payment_status = Column(String(20), default="pending", nullable=False)  # pending, completed, failed
    payment_reference = Column(String(128), nullable=True, index=True)
    payment_method = Column(String(50), nullable=True)
    total_amount = Column(Numeric(12, 2), default=0, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class Client(Base):
    __tablename__ = "clients"

    id = Column(String(64), primary_key=True, default=generate_id)
    business_id = Column(String(64), ForeignKey("businesses.id"), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    status = Column(String(20), default="active", nullable=False)  # active, inactive
    total_spent = Column(Numeric(12, 2), default=0, nullable=False)  # Only ever increased by settlement
    last_booking_date = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class ClientBusinessTransaction(Base):
    __tablename__ = "client_business_transactions"

    id = Column(String(64), primary_key=True, default=generate_id)
    booking_id = Column(String(64), nullable=True, index=True)
    business_id = Column(String(64), ForeignKey("businesses.id"), nullable=False, index=True)
    client_email = Column(String(255), nullable=True)
    client_phone = Column(String(50), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    platform_fee = Column(Numeric(12, 2), nullable=False)
    business_amount = Column(Numeric(12, 2), nullable=False)
    payment_reference = Column(String(128), unique=True, nullable=False)  # Our reference
    paystack_reference = Column(String(128), nullable=True, index=True)  # Provider-issued reference
    payment_method = Column(String(50), default="paystack", nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, completed, failed
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class PaymentTransaction(Base):
    """Append-only ledger row, one per confirmed settlement"""

    __tablename__ = "payment_transactions"

    id = Column(String(64), primary_key=True, default=generate_id)
    business_id = Column(String(64), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), default="KES", nullable=False)
    status = Column(String(20), default="completed", nullable=False)
    payment_method = Column(String(50), default="paystack", nullable=False)
    paystack_reference = Column(String(128), unique=True, nullable=False)
    transaction_type = Column(String(30), nullable=False)  # subscription, client_to_business
    payment_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class PaymentIntent(Base):
    """Pending subscription charge created at initiation time"""

    __tablename__ = "payment_intents"

    id = Column(String(64), primary_key=True, default=generate_id)
    business_id = Column(String(64), nullable=False, index=True)
    reference = Column(String(128), unique=True, nullable=False)
    purpose = Column(String(30), default="subscription", nullable=False)
    plan_type = Column(String(30), nullable=True)
    provider = Column(String(20), default="card", nullable=False)  # card, mpesa, airtel
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(8), default="KES", nullable=False)
    status = Column(String(20), default="pending", nullable=False)  # pending, paid, failed
    meta = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    paid_at = Column(DateTime, nullable=True)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id = Column(String(64), primary_key=True, default=generate_id)
    business_id = Column(String(64), ForeignKey("businesses.id"), unique=True, nullable=False)
    user_id = Column(String(64), nullable=True)
    plan_type = Column(String(30), nullable=False)  # starter, medium, premium
    status = Column(String(20), default="active", nullable=False)
    current_period_end = Column(DateTime, nullable=True)
    staff_limit = Column(Integer, nullable=True)  # None means unlimited
    bookings_limit = Column(Integer, nullable=True)  # None means unlimited
    paystack_reference = Column(String(128), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class BusinessRevenue(Base):
    """Running revenue totals per business, incremented by settlement"""

    __tablename__ = "business_revenue"

    business_id = Column(String(64), ForeignKey("businesses.id"), primary_key=True)
    total_revenue = Column(Numeric(14, 2), default=0, nullable=False)
    platform_fees = Column(Numeric(14, 2), default=0, nullable=False)
    net_revenue = Column(Numeric(14, 2), default=0, nullable=False)
    transaction_count = Column(Integer, default=0, nullable=False)
    last_payment_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SettlementRecord(Base):
    """Step log for a provider reference; the unique reference is the idempotency claim"""

    __tablename__ = "settlement_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    reference = Column(String(128), unique=True, nullable=False)
    event_type = Column(String(64), nullable=False)
    payment_type = Column(String(30), nullable=False)
    status = Column(String(20), default="processing", nullable=False)  # processing, completed, partial
    completed_steps = Column(JSON, default=list, nullable=False)
    failed_steps = Column(JSON, default=list, nullable=False)
    payload = Column(JSON, nullable=True)  # Validated event envelope, replayed by the sweep
    attempts = Column(Integer, default=1, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class SecurityEvent(Base):
    """Append-only audit trail"""

    __tablename__ = "security_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_type = Column(String(64), nullable=False, index=True)
    description = Column(Text, nullable=False)
    severity = Column(String(16), default="info", nullable=False)  # info, warning, error, critical
    event_metadata = Column("metadata", JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)


class AppConfig(Base):
    """Runtime configuration store (e.g. the CORS allow-list)"""

    __tablename__ = "app_config"

    key = Column(String(100), primary_key=True)
    value = Column(JSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
