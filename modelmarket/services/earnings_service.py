"""
Earnings Service: creator revenue share
=======================================

Credits ``creator_revenue_share`` (default 80%) of a paid amount to the
creator's running ``total_earnings``; the platform keeps the rest.

The credit is a single atomic ``UPDATE ... SET total_earnings =
total_earnings + :share``; the total is never recomputed. Crediting is
best-effort: failures are logged and reported as ``False`` and never undo
the usage record or payment that triggered them.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError

from modelmarket.config import settings
from modelmarket.core.database import get_session_context
from modelmarket.models.marketplace import AIModel, CreatorProfile

logger = logging.getLogger(__name__)

__all__ = ["EarningsService", "earnings_service"]


class EarningsService:
    def __init__(self, revenue_share: Optional[float] = None):
        self.revenue_share: float = revenue_share if revenue_share is not None else settings.creator_revenue_share

    def creator_share(self, amount: float) -> float:
        return round(amount * self.revenue_share, 8)

    def credit(self, creator_id: str, amount: float, source: str, reference: Optional[str] = None) -> bool:
        """Add the creator's share of *amount*. Returns True when a row was credited."""
        if amount <= 0:
            return False

        share = self.creator_share(amount)
        try:
            with get_session_context() as session:
                result = session.execute(
                    update(CreatorProfile)
                    .where(CreatorProfile.id == creator_id)
                    .values(total_earnings=CreatorProfile.total_earnings + share)
                )
                session.commit()
        except SQLAlchemyError as exc:
            logger.error(
                "Earnings credit failed: creator=%s amount=%.6f source=%s ref=%s: %s",
                creator_id, amount, source, reference, exc,
            )
            return False

        if not result.rowcount:
            logger.warning("Earnings credit skipped: creator %s not found (source=%s ref=%s)", creator_id, source, reference)
            return False

        logger.info(
            "Credited creator %s with %.6f of %.6f (%s %s)",
            creator_id, share, amount, source, reference,
        )
        return True

    def credit_for_model(self, model_id: Optional[str], amount: float, source: str, reference: Optional[str] = None) -> bool:
        """Resolve the model's creator and credit them."""
        if not model_id or amount <= 0:
            return False
        try:
            with get_session_context() as session:
                model = session.get(AIModel, model_id)
        except SQLAlchemyError as exc:
            logger.error("Earnings credit failed: model lookup %s: %s", model_id, exc)
            return False
        if model is None:
            logger.warning("Earnings credit skipped: model %s not found (source=%s)", model_id, source)
            return False
        return self.credit(model.creator_id, amount, source, reference)


earnings_service = EarningsService()
