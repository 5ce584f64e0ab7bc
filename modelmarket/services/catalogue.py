"""Read-only lookups into the marketplace catalogue (models, plans, creators)."""

from __future__ import annotations

import logging
from typing import Optional

from modelmarket.core.database import get_session_context
from modelmarket.models.marketplace import AIModel, PricingPlan, User

logger = logging.getLogger(__name__)


def get_model(model_id: str) -> Optional[AIModel]:
    with get_session_context() as session:
        return session.get(AIModel, model_id)


def get_plan(plan_id: str) -> Optional[PricingPlan]:
    with get_session_context() as session:
        return session.get(PricingPlan, plan_id)


def get_user_email(user_id: str) -> Optional[str]:
    with get_session_context() as session:
        user = session.get(User, user_id)
        return user.email if user else None

