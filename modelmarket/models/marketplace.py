"""
Marketplace Catalogue Models
============================

SQLModel tables for the catalogue the billing flow reads and updates:
- User: marketplace account.
- CreatorProfile: creator identity plus the running earnings total.
- AIModel: a listed model, with call/download counters.
- PricingPlan: a model's plan, with base price and request limits.

Only the columns the payment, usage and earnings paths touch are modelled.
"""

from datetime import datetime
from typing import Optional
from uuid import uuid4

from sqlmodel import Field, SQLModel

from modelmarket.core.timeutil import utcnow


def _new_id() -> str:
    return str(uuid4())


class ModelStatus:
    DRAFT = "DRAFT"
    PUBLISHED = "PUBLISHED"
    ARCHIVED = "ARCHIVED"


class PlanUnit:
    HOURLY = "HOURLY"
    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    PER_REQUEST = "PER_REQUEST"


class User(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    email: str = Field(unique=True, index=True, max_length=255)
    name: Optional[str] = Field(default=None, nullable=True, max_length=255)
    created_at: datetime = Field(default_factory=utcnow)


class CreatorProfile(SQLModel, table=True):
    """Creator identity. ``total_earnings`` only ever receives additive updates."""

    __tablename__ = "creator_profiles"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    user_id: str = Field(unique=True, index=True, max_length=64)
    display_name: str = Field(max_length=255)
    verified: bool = Field(default=False)
    total_earnings: float = Field(default=0.0)
    created_at: datetime = Field(default_factory=utcnow)


class AIModel(SQLModel, table=True):
    __tablename__ = "ai_models"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    creator_id: str = Field(index=True, max_length=64)
    name: str = Field(max_length=255)
    slug: str = Field(unique=True, max_length=255)
    category: Optional[str] = Field(default=None, nullable=True, max_length=64)
    status: str = Field(default=ModelStatus.DRAFT, index=True, max_length=32)
    api_call_count: int = Field(default=0)
    download_count: int = Field(default=0)
    created_at: datetime = Field(default_factory=utcnow)


class PricingPlan(SQLModel, table=True):
    """A model's pricing plan. Null request limits mean unlimited."""

    __tablename__ = "pricing_plans"

    id: str = Field(default_factory=_new_id, primary_key=True, max_length=64)
    model_id: str = Field(index=True, max_length=64)
    name: str = Field(max_length=255)
    type: str = Field(default="premium", max_length=32)
    price: float = Field(default=0.0)
    unit: str = Field(default=PlanUnit.MONTHLY, max_length=32)
    requests_per_month: Optional[int] = Field(default=None, nullable=True)
    requests_per_minute: Optional[int] = Field(default=None, nullable=True)
    created_at: datetime = Field(default_factory=utcnow)
