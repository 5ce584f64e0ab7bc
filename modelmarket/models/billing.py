"""
Billing Models
==============

SQLModel tables for persistent payment state:
- Payment: one row per Helio transaction; ``external_id`` is the
  idempotency key for webhook redelivery.
- Subscription: a user's time-bounded access grant to a model. At most one
  ACTIVE row per (user_id, model_id), enforced by a partial unique index.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlalchemy import Index, text
from sqlmodel import Field, SQLModel

from modelmarket.core.timeutil import utcnow


class SubscriptionStatus:
    ACTIVE = "ACTIVE"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    PAST_DUE = "PAST_DUE"


class PaymentStatus:
    COMPLETED = "completed"
    FAILED = "failed"


class Payment(SQLModel, table=True):
    __tablename__ = "payments"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=64)
    external_id: str = Field(unique=True, index=True, max_length=255)
    event: str = Field(max_length=32)
    amount: float = Field(default=0.0)
    currency: str = Field(default="USDC", max_length=16)
    user_id: Optional[str] = Field(default=None, nullable=True, index=True, max_length=64)
    model_id: Optional[str] = Field(default=None, nullable=True, max_length=64)
    plan_id: Optional[str] = Field(default=None, nullable=True, max_length=64)
    paylink_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    transaction_signature: Optional[str] = Field(default=None, nullable=True, max_length=255)
    raw_status: Optional[str] = Field(default=None, nullable=True, max_length=64)
    status: str = Field(default=PaymentStatus.FAILED, max_length=32)
    subscription_id: Optional[str] = Field(default=None, nullable=True, max_length=64)
    created_at: datetime = Field(default_factory=utcnow)


class Subscription(SQLModel, table=True):
    __tablename__ = "subscriptions"
    __table_args__ = (
        Index(
            "uq_subscriptions_active_pair",
            "user_id",
            "model_id",
            unique=True,
            sqlite_where=text("status = 'ACTIVE'"),
            postgresql_where=text("status = 'ACTIVE'"),
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True, max_length=64)
    user_id: str = Field(index=True, max_length=64)
    model_id: str = Field(index=True, max_length=64)
    plan_id: str = Field(max_length=64)
    status: str = Field(default=SubscriptionStatus.ACTIVE, index=True, max_length=32)
    current_period_start: datetime
    current_period_end: datetime = Field(index=True)
    payment_method: str = Field(default="helio", max_length=32)
    helio_transaction_id: Optional[str] = Field(default=None, nullable=True, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
