"""
Subscription Service: lifecycle state per (user, model)
========================================================

PURPOSE:
    1. **reconcile()**: applies a first-seen Helio webhook to subscription
       state. CREATED/STARTED open a subscription, RENEWED extends it,
       ENDED cancels it (period end kept: access runs to natural expiry).
    2. **request_renewal()**: the user-facing renew action. Quotes a price,
       creates a Helio pay link whose metadata names the subscription, and
       reports the window the renewal will cover.
    3. **start_checkout()**: pay link for a first purchase.
    4. Reads (list / detail / active lookup) and the expiry sweep.

STATE MACHINE:
    NONE → ACTIVE                 (CREATED/STARTED, transaction SUCCESS)
    ACTIVE → ACTIVE               (RENEWED, or CREATED carrying renewalFor:
                                   period_end = max(period_end, now) + duration)
    EXPIRED → ACTIVE              (RENEWED within the grace window)
    ACTIVE → CANCELLED            (ENDED, period_end unchanged; access
                                   continues until period_end)
    ACTIVE|CANCELLED → EXPIRED    (sweep, once period_end has passed)

RENEWAL PRICING (fraction of plan base price, absolute floor in USDC):
    hour 5% / 2, day 10% / 8, week 30% / 30, month 100% / 100

At most one ACTIVE subscription per (user, model) is enforced by the partial
unique index ``uq_subscriptions_active_pair``; a racing insert surfaces as
DuplicateSubscription.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, or_, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from modelmarket.config import settings
from modelmarket.core.database import get_session_context
from modelmarket.core.errors import (
    DUPLICATE_SUBSCRIPTION,
    MALFORMED_PAYLOAD,
    MODEL_NOT_PUBLISHED,
    MODEL_UNAVAILABLE,
    PERSISTENCE_ERROR,
    REFERENCE_NOT_FOUND,
    RENEWAL_NOT_ELIGIBLE,
    SUBSCRIPTION_NOT_FOUND,
    MarketError,
)
from modelmarket.core.timeutil import iso, utcnow
from modelmarket.models.billing import Payment, Subscription, SubscriptionStatus
from modelmarket.models.marketplace import AIModel, ModelStatus, PlanUnit, PricingPlan
from modelmarket.services.helio_client import PayLink, helio_client
from modelmarket.services.webhook_events import WebhookEvent, WebhookEventKind

logger = logging.getLogger(__name__)

__all__ = [
    "CheckoutOffer",
    "RenewalOffer",
    "StatusInfo",
    "SubscriptionService",
    "ACCESS_STATUSES",
    "can_renew",
    "duration_delta",
    "grants_access",
    "normalize_duration",
    "renewal_price",
    "renewal_window",
    "serialize_subscription",
    "status_info",
    "subscription_service",
]

# ---------------------------------------------------------------------------
# Durations and pricing
# ---------------------------------------------------------------------------
DEFAULT_DURATION_HOURS = 24

DURATION_HOURS: Dict[str, int] = {
    "hour": 1,
    "day": 24,
    "week": 168,
    "month": 720,
    "year": 8760,
}

_DURATION_ALIASES = {
    "hourly": "hour",
    "daily": "day",
    "weekly": "week",
    "monthly": "month",
    "yearly": "year",
    "annual": "year",
}

_PLAN_UNIT_DURATION = {
    PlanUnit.HOURLY: "hour",
    PlanUnit.DAILY: "day",
    PlanUnit.WEEKLY: "week",
    PlanUnit.MONTHLY: "month",
    PlanUnit.YEARLY: "year",
}

# duration → (rate of base price, absolute floor)
RENEWAL_PRICING: Dict[str, tuple] = {
    "hour": (0.05, 2.0),
    "day": (0.10, 8.0),
    "week": (0.30, 30.0),
    "month": (1.00, 100.0),
}


def normalize_duration(value: Optional[str]) -> Optional[str]:
    """Map ``hourly``/``hour``/``HOUR`` etc. to a canonical key, or None."""
    if not value:
        return None
    key = value.strip().lower()
    key = _DURATION_ALIASES.get(key, key)
    return key if key in DURATION_HOURS else None


def duration_delta(duration: Optional[str], plan_unit: Optional[str] = None) -> timedelta:
    """Resolve the paid period: explicit duration, else plan unit, else 24h."""
    key = normalize_duration(duration)
    if key is None and plan_unit:
        key = _PLAN_UNIT_DURATION.get(plan_unit.upper())
    hours = DURATION_HOURS.get(key, DEFAULT_DURATION_HOURS) if key else DEFAULT_DURATION_HOURS
    return timedelta(hours=hours)


def renewal_price(base_price: float, duration: Optional[str]) -> float:
    key = normalize_duration(duration)
    if key not in RENEWAL_PRICING:
        return base_price
    rate, floor = RENEWAL_PRICING[key]
    return max(floor, base_price * rate)


# Statuses that still grant model access while the paid period runs
ACCESS_STATUSES = (SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED)


def grants_access(sub: Subscription, now: Optional[datetime] = None) -> bool:
    """ACTIVE, or CANCELLED with time left on the paid period."""
    now = now or utcnow()
    return sub.status in ACCESS_STATUSES and sub.current_period_end > now


def can_renew(sub: Subscription, now: Optional[datetime] = None) -> bool:
    """Renewable once expired or inside the pre-expiry window."""
    now = now or utcnow()
    end = sub.current_period_end
    return now > end or (end - now) < timedelta(hours=settings.renewal_window_hours)


def renewal_window(sub: Subscription, duration: Optional[str], now: Optional[datetime] = None) -> tuple:
    """(start, end) a renewal would cover: it starts where the current period ends."""
    now = now or utcnow()
    start = max(sub.current_period_end, now)
    return start, start + duration_delta(duration)


@dataclass(frozen=True)
class StatusInfo:
    is_active: bool
    is_expired: bool
    days_remaining: int
    hours_remaining: int
    expires_at: datetime
    can_renew: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "isActive": self.is_active,
            "isExpired": self.is_expired,
            "daysRemaining": self.days_remaining,
            "hoursRemaining": self.hours_remaining,
            "expiresAt": iso(self.expires_at),
            "canRenew": self.can_renew,
        }


def status_info(sub: Subscription, now: Optional[datetime] = None) -> StatusInfo:
    now = now or utcnow()
    remaining_s = (sub.current_period_end - now).total_seconds()
    return StatusInfo(
        is_active=grants_access(sub, now),
        is_expired=sub.current_period_end <= now,
        days_remaining=max(0, math.ceil(remaining_s / 86400)),
        hours_remaining=max(0, math.ceil(remaining_s / 3600)),
        expires_at=sub.current_period_end,
        can_renew=can_renew(sub, now),
    )


def serialize_subscription(sub: Subscription, now: Optional[datetime] = None) -> Dict[str, Any]:
    """Wire form of a subscription, with its live status block."""
    return {
        "id": sub.id,
        "userId": sub.user_id,
        "modelId": sub.model_id,
        "planId": sub.plan_id,
        "status": sub.status,
        "currentPeriodStart": iso(sub.current_period_start),
        "currentPeriodEnd": iso(sub.current_period_end),
        "paymentMethod": sub.payment_method,
        "helioTransactionId": sub.helio_transaction_id,
        "createdAt": iso(sub.created_at),
        "statusInfo": status_info(sub, now).to_dict(),
    }


@dataclass(frozen=True)
class RenewalOffer:
    subscription: Subscription
    paylink: PayLink
    amount: float
    currency: str
    duration: str
    will_start_at: datetime
    will_end_at: datetime


@dataclass(frozen=True)
class CheckoutOffer:
    paylink: PayLink
    amount: float
    currency: str
    duration: str
    model_id: str
    plan_id: str


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

def _persistence_error(action: str, exc: Exception, **context) -> MarketError:
    return MarketError(PERSISTENCE_ERROR, detail=f"{action} failed: {exc}", context=context)


class SubscriptionService:
    """Subscription lifecycle over the ``subscriptions`` table."""

    # ------------------------------------------------------------------
    # Webhook reconciliation
    # ------------------------------------------------------------------

    def reconcile(
        self,
        event: WebhookEvent,
        payment: Payment,
        now: Optional[datetime] = None,
    ) -> Optional[Subscription]:
        """Apply a first-seen webhook event. Returns the affected subscription, if any."""
        now = now or utcnow()
        kind = event.kind

        if kind is WebhookEventKind.UNRECOGNIZED:
            logger.info("Ignoring unrecognized Helio event %r (payment %s)", event.raw_event, payment.id)
            return None

        if kind in (WebhookEventKind.CREATED, WebhookEventKind.STARTED, WebhookEventKind.RENEWED) and not event.succeeded:
            logger.info(
                "Payment %s not successful (status=%s); no subscription change",
                payment.id,
                event.status,
            )
            return None

        try:
            # Renewal pay links are one-off (CREATED) and name the subscription they extend
            if kind is WebhookEventKind.RENEWED or (kind is WebhookEventKind.CREATED and event.renewal_for):
                return self._renew(event, now)
            if kind in (WebhookEventKind.CREATED, WebhookEventKind.STARTED):
                return self._start(event, now)
            return self._end(event, now)
        except SQLAlchemyError as exc:
            raise _persistence_error("subscription reconcile", exc, transaction_id=event.transaction_id) from exc

    @staticmethod
    def _require(event: WebhookEvent, *names: str) -> None:
        missing = [name for name in names if not getattr(event, name)]
        if missing:
            raise MarketError(
                MALFORMED_PAYLOAD,
                detail=f"{event.raw_event} metadata missing {', '.join(missing)}",
                context={"transaction_id": event.transaction_id},
            )

    def _start(self, event: WebhookEvent, now: datetime) -> Subscription:
        self._require(event, "user_id", "model_id", "plan_id")

        with get_session_context() as session:
            model = session.get(AIModel, event.model_id)
            if model is None:
                raise MarketError(REFERENCE_NOT_FOUND, detail=f"model {event.model_id} not found",
                                  context={"model_id": event.model_id})
            plan = session.get(PricingPlan, event.plan_id)
            if plan is None or plan.model_id != model.id:
                raise MarketError(REFERENCE_NOT_FOUND, detail=f"plan {event.plan_id} not found for model {model.id}",
                                  context={"model_id": model.id, "plan_id": event.plan_id})

            applied = self._applied_by(session, event)
            if applied is not None:
                logger.info("Transaction %s already started subscription %s", event.transaction_id, applied.id)
                return applied

            self._expire_pair(session, event.user_id, event.model_id, now)
            if self._active_row(session, event.user_id, event.model_id) is not None:
                raise MarketError(
                    DUPLICATE_SUBSCRIPTION,
                    detail=f"user {event.user_id} already has an active subscription to {event.model_id}",
                    context={"user_id": event.user_id, "model_id": event.model_id},
                )

            sub = Subscription(
                user_id=event.user_id,
                model_id=event.model_id,
                plan_id=plan.id,
                status=SubscriptionStatus.ACTIVE,
                current_period_start=now,
                current_period_end=now + duration_delta(event.duration, plan.unit),
                payment_method="helio",
                helio_transaction_id=event.transaction_id,
                created_at=now,
                updated_at=now,
            )
            session.add(sub)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise MarketError(
                    DUPLICATE_SUBSCRIPTION,
                    detail="concurrent activation for the same user/model",
                    context={"user_id": event.user_id, "model_id": event.model_id},
                ) from exc
            session.refresh(sub)

        logger.info(
            "Subscription %s started: user=%s model=%s plan=%s until %s",
            sub.id, sub.user_id, sub.model_id, sub.plan_id, sub.current_period_end.isoformat(),
        )
        return sub

    def _renew(self, event: WebhookEvent, now: datetime) -> Subscription:
        self._require(event, "user_id", "model_id")

        with get_session_context() as session:
            target = self._renewal_target(session, event, now)
            if target is None:
                raise MarketError(
                    REFERENCE_NOT_FOUND,
                    detail=f"no renewable subscription for user {event.user_id} model {event.model_id}",
                    context={"user_id": event.user_id, "model_id": event.model_id, "renewal_for": event.renewal_for},
                )
            if target.helio_transaction_id == event.transaction_id:
                logger.info("Transaction %s already renewed subscription %s", event.transaction_id, target.id)
                return target

            plan = session.get(PricingPlan, target.plan_id)
            previous_end = target.current_period_end
            start_from = max(previous_end, now)
            if previous_end < now:
                target.current_period_start = now
            target.current_period_end = start_from + duration_delta(event.duration, plan.unit if plan else None)
            target.status = SubscriptionStatus.ACTIVE
            target.helio_transaction_id = event.transaction_id
            target.updated_at = now
            session.add(target)
            try:
                session.commit()
            except IntegrityError as exc:
                session.rollback()
                raise MarketError(
                    DUPLICATE_SUBSCRIPTION,
                    detail=f"cannot reactivate {target.id}: another subscription is active",
                    context={"subscription_id": target.id},
                ) from exc
            session.refresh(target)

        logger.info(
            "Subscription %s renewed: %s -> %s",
            target.id, previous_end.isoformat(), target.current_period_end.isoformat(),
        )
        return target

    def _renewal_target(self, session, event: WebhookEvent, now: datetime) -> Optional[Subscription]:
        if event.renewal_for:
            sub = session.get(Subscription, event.renewal_for)
            if sub is None or sub.user_id != event.user_id or sub.model_id != event.model_id:
                return None
            return sub

        grace_cutoff = now - timedelta(days=settings.renewal_grace_days)
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == event.user_id)
            .where(Subscription.model_id == event.model_id)
            .where(
                or_(
                    Subscription.status == SubscriptionStatus.ACTIVE,
                    and_(
                        Subscription.status == SubscriptionStatus.EXPIRED,
                        Subscription.current_period_end >= grace_cutoff,
                    ),
                )
            )
            .order_by(Subscription.current_period_end.desc())
        )
        return session.exec(stmt).first()

    def _end(self, event: WebhookEvent, now: datetime) -> Optional[Subscription]:
        self._require(event, "user_id", "model_id")

        with get_session_context() as session:
            if event.renewal_for:
                sub = session.get(Subscription, event.renewal_for)
                if sub is not None and (sub.user_id != event.user_id or sub.model_id != event.model_id):
                    sub = None
            else:
                sub = self._active_row(session, event.user_id, event.model_id)

            if sub is None:
                logger.info("ENDED for user %s model %s: no subscription to cancel", event.user_id, event.model_id)
                return None
            if sub.status != SubscriptionStatus.ACTIVE:
                return sub

            sub.status = SubscriptionStatus.CANCELLED
            sub.updated_at = now
            session.add(sub)
            session.commit()
            session.refresh(sub)

        logger.info("Subscription %s cancelled; access continues until %s", sub.id, sub.current_period_end.isoformat())
        return sub

    @staticmethod
    def _applied_by(session, event: WebhookEvent) -> Optional[Subscription]:
        """Subscription this transaction already produced, if an earlier delivery got that far."""
        stmt = (
            select(Subscription)
            .where(Subscription.helio_transaction_id == event.transaction_id)
            .where(Subscription.user_id == event.user_id)
            .where(Subscription.model_id == event.model_id)
        )
        return session.exec(stmt).first()

    @staticmethod
    def _active_row(session, user_id: str, model_id: str) -> Optional[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.model_id == model_id)
            .where(Subscription.status == SubscriptionStatus.ACTIVE)
        )
        return session.exec(stmt).first()

    @staticmethod
    def _expire_pair(session, user_id: str, model_id: str, now: datetime) -> None:
        """Lazily expire ACTIVE rows for the pair whose period has passed."""
        session.execute(
            update(Subscription)
            .where(Subscription.user_id == user_id)
            .where(Subscription.model_id == model_id)
            .where(Subscription.status == SubscriptionStatus.ACTIVE)
            .where(Subscription.current_period_end <= now)
            .values(status=SubscriptionStatus.EXPIRED, updated_at=now)
        )
        session.flush()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def find_active(self, user_id: str, model_id: str, now: Optional[datetime] = None) -> Optional[Subscription]:
        """The subscription granting access right now, if any."""
        now = now or utcnow()
        with get_session_context() as session:
            stmt = (
                select(Subscription)
                .where(Subscription.user_id == user_id)
                .where(Subscription.model_id == model_id)
                .where(Subscription.status.in_(ACCESS_STATUSES))
                .where(Subscription.current_period_end > now)
                .order_by(Subscription.current_period_end.desc())
            )
            return session.exec(stmt).first()

    def list_for_user(
        self,
        user_id: str,
        status: Optional[str] = None,
        active_only: bool = False,
        now: Optional[datetime] = None,
    ) -> List[Subscription]:
        now = now or utcnow()
        with get_session_context() as session:
            stmt = select(Subscription).where(Subscription.user_id == user_id)
            if status:
                stmt = stmt.where(Subscription.status == status.upper())
            if active_only:
                stmt = stmt.where(Subscription.status.in_(ACCESS_STATUSES)).where(
                    Subscription.current_period_end > now
                )
            stmt = stmt.order_by(Subscription.current_period_end.desc())
            return list(session.exec(stmt).all())

    def get_for_user(self, subscription_id: str, user_id: str) -> Subscription:
        """Load a subscription owned by *user_id*; other users' rows read as missing."""
        with get_session_context() as session:
            sub = session.get(Subscription, subscription_id)
        if sub is None or sub.user_id != user_id:
            raise MarketError(SUBSCRIPTION_NOT_FOUND, detail=f"subscription {subscription_id} not found for user {user_id}")
        return sub

    # ------------------------------------------------------------------
    # Checkout and renewal (outbound pay links)
    # ------------------------------------------------------------------

    async def start_checkout(
        self,
        user_id: str,
        model_id: str,
        plan_id: str,
        duration: Optional[str] = None,
        customer_email: Optional[str] = None,
    ) -> CheckoutOffer:
        with get_session_context() as session:
            model = session.get(AIModel, model_id)
            if model is None:
                raise MarketError(MODEL_UNAVAILABLE, detail=f"model {model_id} not found")
            plan = session.get(PricingPlan, plan_id)
            if plan is None or plan.model_id != model_id:
                raise MarketError(REFERENCE_NOT_FOUND, detail=f"plan {plan_id} not found for model {model_id}")
        if model.status != ModelStatus.PUBLISHED:
            raise MarketError(MODEL_NOT_PUBLISHED, detail=f"model {model_id} is {model.status}")

        if self.find_active(user_id, model_id) is not None:
            raise MarketError(
                DUPLICATE_SUBSCRIPTION,
                detail=f"user {user_id} already subscribed to {model_id}",
                context={"user_id": user_id, "model_id": model_id},
            )

        key = normalize_duration(duration) or _PLAN_UNIT_DURATION.get(plan.unit, "day")
        paylink = await helio_client.create_model_payment(
            model_id=model_id,
            plan_id=plan_id,
            amount=plan.price,
            customer_email=customer_email,
            metadata={
                "userId": user_id,
                "duration": key,
                "planName": plan.name,
                "planType": plan.type,
            },
        )
        return CheckoutOffer(
            paylink=paylink,
            amount=plan.price,
            currency=settings.helio_currency,
            duration=key,
            model_id=model_id,
            plan_id=plan_id,
        )

    async def request_renewal(
        self,
        subscription_id: str,
        user_id: str,
        duration: str = "month",
        customer_email: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> RenewalOffer:
        now = now or utcnow()
        sub = self.get_for_user(subscription_id, user_id)

        with get_session_context() as session:
            model = session.get(AIModel, sub.model_id)
            plan = session.get(PricingPlan, sub.plan_id)
        if model is None or model.status != ModelStatus.PUBLISHED:
            raise MarketError(MODEL_NOT_PUBLISHED, detail=f"model {sub.model_id} unavailable for renewal")
        if plan is None:
            raise MarketError(REFERENCE_NOT_FOUND, detail=f"plan {sub.plan_id} missing for subscription {sub.id}")

        if not can_renew(sub, now):
            raise MarketError(
                RENEWAL_NOT_ELIGIBLE,
                detail=f"subscription {sub.id} expires at {sub.current_period_end.isoformat()}",
                context={"expires_at": iso(sub.current_period_end)},
            )

        key = normalize_duration(duration) or "month"
        price = renewal_price(plan.price, key)
        start, end = renewal_window(sub, key, now)

        paylink = await helio_client.create_model_payment(
            model_id=model.id,
            plan_id=plan.id,
            amount=price,
            customer_email=customer_email,
            metadata={
                "userId": user_id,
                "duration": key,
                "renewalFor": sub.id,
                "modelName": model.name,
                "subscriptionType": "renewal",
            },
        )
        logger.info("Renewal pay link %s for subscription %s: %.2f %s", paylink.id, sub.id, price, settings.helio_currency)
        return RenewalOffer(
            subscription=sub,
            paylink=paylink,
            amount=price,
            currency=settings.helio_currency,
            duration=key,
            will_start_at=start,
            will_end_at=end,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def expire_lapsed(self, now: Optional[datetime] = None) -> int:
        """Move ACTIVE/CANCELLED subscriptions past their period end to EXPIRED."""
        now = now or utcnow()
        with get_session_context() as session:
            result = session.execute(
                update(Subscription)
                .where(Subscription.status.in_([SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED]))
                .where(Subscription.current_period_end <= now)
                .values(status=SubscriptionStatus.EXPIRED, updated_at=now)
            )
            session.commit()
            count = result.rowcount or 0
        if count:
            logger.info("Expired %d lapsed subscriptions", count)
        return count


subscription_service = SubscriptionService()
