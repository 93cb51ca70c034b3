from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Column,
    Integer,
    String,
    Float,
    Boolean,
    Numeric,
    Text,
    ForeignKey,
    Index,
    text,
)


Base = declarative_base()

# Order status vocabulary
PENDING = "pending"
PAID = "paid"
FAILED = "failed"
CHALLENGE = "challenge"
CANCELLED = "cancelled"
ORDER_STATUSES = (PENDING, PAID, FAILED, CHALLENGE, CANCELLED)

# Payment status vocabulary
PAYMENT_STATUSES = (PENDING, PAID, FAILED)


# ----------------------------
# ORM models
# ----------------------------
class Event(Base):
    __tablename__ = "events"
    id = Column(String, primary_key=True)
    title = Column(String, nullable=False)
    location = Column(String, nullable=False, default="")
    starts_at = Column(Float, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)


class Participant(Base):
    __tablename__ = "participants"
    id = Column(String, primary_key=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, unique=True)
    phone = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class Order(Base):
    __tablename__ = "orders"
    id = Column(String, primary_key=True)
    event_id = Column(
        String, ForeignKey("events.id", ondelete="RESTRICT"), nullable=False
    )
    participant_id = Column(
        String, ForeignKey("participants.id", ondelete="RESTRICT"),
        nullable=False,
    )
    price = Column(Numeric(12, 2), nullable=False)  # copied from the event
    admin_fee = Column(Integer, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)  # price + admin_fee

    # pending | paid | failed | challenge | cancelled
    status = Column(String, nullable=False, default=PENDING)
    created_at = Column(Float, nullable=False)

    __table_args__ = (
        Index("orders_event_participant_idx", "event_id", "participant_id"),
        # at most one paid order per (event, participant)
        Index(
            "orders_one_paid_idx", "event_id", "participant_id",
            unique=True,
            sqlite_where=text("status = 'paid'"),
            postgresql_where=text("status = 'paid'"),
        ),
    )


class Payment(Base):
    __tablename__ = "payments"
    id = Column(String, primary_key=True)
    order_id = Column(
        String, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False,
        index=True,
    )
    # null until the gateway has answered
    gateway_transaction_id = Column(String, nullable=True)
    channel = Column(String, nullable=True)
    # pending | paid | failed
    status = Column(String, nullable=False, default=PENDING)
    paid_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(String, primary_key=True)
    # one ticket per order, enforced here as well as by the reconciler
    order_id = Column(
        String, ForeignKey("orders.id", ondelete="RESTRICT"), nullable=False,
        unique=True,
    )
    qr_token = Column(String, nullable=False, unique=True)
    is_valid = Column(Boolean, nullable=False, default=True)
    created_at = Column(Float, nullable=False)


class WebhookLog(Base):
    __tablename__ = "webhook_logs"
    id = Column(String, primary_key=True)
    order_id = Column(String, nullable=False, index=True)
    gateway_transaction_id = Column(String, nullable=True)
    gateway_status = Column(String, nullable=False)
    fraud_status = Column(String, nullable=True)
    # applied | duplicate | ignored | stale
    outcome = Column(String, nullable=False)
    related_payment_id = Column(
        String, ForeignKey("payments.id", ondelete="RESTRICT"), nullable=True
    )
    payload = Column(Text, nullable=False)
    received_at = Column(Float, nullable=False)


class ChargeSession(Base):
    """Active gateway charge per order (SQL backend of the charge cache)."""
    __tablename__ = "charge_sessions"
    order_id = Column(String, primary_key=True)
    data = Column(Text, nullable=False)  # JSON-encoded Charge
    expires_at = Column(Float, nullable=False)
