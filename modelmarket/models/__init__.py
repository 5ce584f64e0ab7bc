"""SQLModel tables. Importing this package registers every table on SQLModel.metadata."""

from modelmarket.models.api_key import APIKey
from modelmarket.models.billing import Payment, PaymentStatus, Subscription, SubscriptionStatus
from modelmarket.models.marketplace import AIModel, CreatorProfile, ModelStatus, PlanUnit, PricingPlan, User
from modelmarket.models.usage import UsageRecord

__all__ = [
    "AIModel",
    "APIKey",
    "CreatorProfile",
    "ModelStatus",
    "Payment",
    "PaymentStatus",
    "PlanUnit",
    "PricingPlan",
    "Subscription",
    "SubscriptionStatus",
    "UsageRecord",
    "User",
]
