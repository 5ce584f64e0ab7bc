"""
Usage Ledger: per-user, per-model consumption records and plan limits
=====================================================================

PURPOSE:
    1. **calculate_cost()**: price one operation.
    2. **record_usage()**: append one UsageRecord (never updated afterwards).
    3. **check_limits()**: calendar-month and last-60s request counts
       against the plan's ``requests_per_month`` / ``requests_per_minute``.
    4. **enforce_limits()**: the gate. Raises 429 errors; the ledger itself
       only records.
    5. **summarize()**: dashboard totals across time ranges.
    6. **stats()**: one look-back period (hour .. year) bucketed into a
       paginated timeline, with a per-model breakdown and efficiency figures.

COST:
    inference = round(tokens / 1000 × token_rate + response_s × time_rate, 5)
    download  = download_fee (flat)
    view      = 0

CONFIGURATION (env vars with MODELMARKET_ prefix):
    MODELMARKET_USAGE_TOKEN_RATE      : $ per 1000 tokens (default 0.001)
    MODELMARKET_USAGE_TIME_RATE       : $ per second of response time (default 0.0001)
    MODELMARKET_DOWNLOAD_FEE          : flat download fee (default 0.01)
    MODELMARKET_NEAR_LIMIT_THRESHOLD  : near-limit ratio (default 0.8)
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, select as sa_select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import select

from modelmarket.config import settings
from modelmarket.core.database import get_session_context
from modelmarket.core.errors import PERSISTENCE_ERROR, RATE_LIMIT_EXCEEDED, TOO_MANY_REQUESTS, MarketError
from modelmarket.core.timeutil import iso, shift_months, start_of_month, start_of_next_month, utcnow
from modelmarket.models.marketplace import AIModel, CreatorProfile, PricingPlan
from modelmarket.models.usage import UsageRecord

logger = logging.getLogger(__name__)

__all__ = [
    "OPERATIONS",
    "STATS_PERIODS",
    "UsageEntry",
    "UsageLedger",
    "UsageLimits",
    "usage_ledger",
]

OPERATIONS = ("inference", "download", "view")
MINUTE_WINDOW = timedelta(seconds=60)

STATS_PERIODS = ("hour", "day", "week", "month", "year")

# look-back period → timeline bucket
_STATS_BUCKET = {
    "hour": "minute",
    "day": "hour",
    "week": "day",
    "month": "day",
    "year": "month",
}

MODEL_BREAKDOWN_SIZE = 10


@dataclass(frozen=True)
class UsageEntry:
    usage_id: str
    cost: float
    timestamp: datetime


@dataclass(frozen=True)
class UsageLimits:
    """Current consumption against a plan. Null limits mean unlimited."""

    monthly_requests: int
    monthly_tokens: int
    minute_requests: int
    requests_per_month: Optional[int]
    requests_per_minute: Optional[int]
    monthly_percent: Optional[int]
    minute_percent: Optional[int]
    is_near_limit: bool
    resets_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "monthly": {
                "used": self.monthly_requests,
                "limit": self.requests_per_month,
                "percentage": self.monthly_percent,
                "tokens": self.monthly_tokens,
                "resetsAt": iso(self.resets_at),
            },
            "minute": {
                "used": self.minute_requests,
                "limit": self.requests_per_minute,
                "percentage": self.minute_percent,
            },
            "isNearLimit": self.is_near_limit,
        }


def _percent(used: int, limit: Optional[int]) -> Optional[int]:
    if not limit:
        return None
    return round(used / limit * 100)


def _near(used: int, limit: Optional[int], threshold: float) -> bool:
    return bool(limit) and used >= limit * threshold


def stats_window(period: str, now: datetime) -> Tuple[datetime, datetime]:
    if period == "hour":
        return now - timedelta(hours=1), now
    if period == "day":
        return now - timedelta(days=1), now
    if period == "week":
        return now - timedelta(days=7), now
    if period == "year":
        return shift_months(now, -12), now
    return shift_months(now, -1), now


def _bucket_start(ts: datetime, unit: str) -> datetime:
    if unit == "minute":
        return ts.replace(second=0, microsecond=0)
    if unit == "hour":
        return ts.replace(minute=0, second=0, microsecond=0)
    if unit == "month":
        return start_of_month(ts)
    return ts.replace(hour=0, minute=0, second=0, microsecond=0)


def _avg_ms(total_ms: float, count: int) -> int:
    return round(total_ms / count) if count else 0


class UsageLedger:
    """Append-only usage accounting over ``usage_records``."""

    def __init__(self):
        self.token_rate: float = settings.usage_token_rate
        self.time_rate: float = settings.usage_time_rate
        self.download_fee: float = settings.download_fee
        self.near_limit_threshold: float = settings.near_limit_threshold

    # ------------------------------------------------------------------
    # Cost
    # ------------------------------------------------------------------

    def calculate_cost(self, operation: str, tokens: int = 0, response_time_ms: int = 0) -> float:
        if operation == "inference":
            token_cost = (tokens / 1000) * self.token_rate
            time_cost = (response_time_ms / 1000) * self.time_rate
            return round(token_cost + time_cost, 5)
        if operation == "download":
            return self.download_fee
        return 0.0

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_usage(
        self,
        user_id: str,
        model_id: str,
        operation: str,
        tokens_used: int = 0,
        response_time_ms: int = 0,
        success: bool = True,
        error_type: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> UsageEntry:
        """Append one usage record and return its id and cost."""
        if tokens_used < 0 or response_time_ms < 0:
            raise ValueError("tokens_used and response_time_ms must be >= 0")

        now = now or utcnow()
        cost = self.calculate_cost(operation, tokens_used, response_time_ms)
        record = UsageRecord(
            user_id=user_id,
            model_id=model_id,
            operation=operation,
            date=now,
            request_count=1,
            token_count=tokens_used,
            cost=cost,
            response_time_ms=response_time_ms,
            success=success,
            error_type=error_type,
            metadata_json=json.dumps(metadata) if metadata else None,
        )
        try:
            with get_session_context() as session:
                session.add(record)
                session.commit()
                session.refresh(record)
        except SQLAlchemyError as exc:
            raise MarketError(
                PERSISTENCE_ERROR,
                detail=f"usage insert failed: {exc}",
                context={"user_id": user_id, "model_id": model_id},
            ) from exc

        logger.info(
            "Usage recorded: user=%s model=%s op=%s tokens=%d cost=%.5f",
            user_id, model_id, operation, tokens_used, cost,
        )
        return UsageEntry(usage_id=record.id, cost=cost, timestamp=now)

    def bump_model_stats(self, model_id: str, operation: str) -> None:
        """Increment the model's call/download counter (views are not counted)."""
        column = {
            "inference": "api_call_count",
            "download": "download_count",
        }.get(operation)
        if column is None:
            return
        with get_session_context() as session:
            session.execute(
                update(AIModel)
                .where(AIModel.id == model_id)
                .values(**{column: getattr(AIModel, column) + 1})
            )
            session.commit()

    # ------------------------------------------------------------------
    # Limits
    # ------------------------------------------------------------------

    def _sum_since(self, session, user_id: str, model_id: Optional[str], since: Optional[datetime], *columns):
        """Row of SUM(column) for each column, zero when nothing matches."""
        stmt = sa_select(*[func.coalesce(func.sum(col), 0) for col in columns]).where(
            UsageRecord.user_id == user_id,
        )
        if since is not None:
            stmt = stmt.where(UsageRecord.date >= since)
        if model_id is not None:
            stmt = stmt.where(UsageRecord.model_id == model_id)
        return session.execute(stmt).one()

    def check_limits(
        self,
        user_id: str,
        model_id: str,
        plan: Optional[PricingPlan],
        now: Optional[datetime] = None,
    ) -> UsageLimits:
        now = now or utcnow()
        month_start = start_of_month(now)

        with get_session_context() as session:
            monthly_requests, monthly_tokens = self._sum_since(
                session, user_id, model_id, month_start,
                UsageRecord.request_count, UsageRecord.token_count,
            )
            (minute_requests,) = self._sum_since(
                session, user_id, model_id, now - MINUTE_WINDOW,
                UsageRecord.request_count,
            )

        per_month = plan.requests_per_month if plan else None
        per_minute = plan.requests_per_minute if plan else None
        threshold = self.near_limit_threshold

        return UsageLimits(
            monthly_requests=int(monthly_requests),
            monthly_tokens=int(monthly_tokens),
            minute_requests=int(minute_requests),
            requests_per_month=per_month,
            requests_per_minute=per_minute,
            monthly_percent=_percent(int(monthly_requests), per_month),
            minute_percent=_percent(int(minute_requests), per_minute),
            is_near_limit=_near(int(monthly_requests), per_month, threshold)
            or _near(int(minute_requests), per_minute, threshold),
            resets_at=start_of_next_month(now),
        )

    def enforce_limits(self, limits: UsageLimits, now: Optional[datetime] = None) -> None:
        """Raise 429 when the plan's monthly or per-minute allowance is used up."""
        now = now or utcnow()
        if limits.requests_per_month and limits.monthly_requests >= limits.requests_per_month:
            raise MarketError(
                RATE_LIMIT_EXCEEDED,
                detail=f"monthly {limits.monthly_requests}/{limits.requests_per_month}",
                context={
                    "retry_after": (limits.resets_at - now).total_seconds(),
                    "used": limits.monthly_requests,
                    "limit": limits.requests_per_month,
                },
            )
        if limits.requests_per_minute and limits.minute_requests >= limits.requests_per_minute:
            raise MarketError(
                TOO_MANY_REQUESTS,
                detail=f"minute {limits.minute_requests}/{limits.requests_per_minute}",
                context={
                    "retry_after": MINUTE_WINDOW.total_seconds(),
                    "used": limits.minute_requests,
                    "limit": limits.requests_per_minute,
                },
            )

    # ------------------------------------------------------------------
    # Dashboard summary
    # ------------------------------------------------------------------

    def summarize(
        self,
        user_id: str,
        plans_by_model: Optional[Dict[str, PricingPlan]] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Totals for today / 7 days / this month / all time plus limit analysis.

        ``plans_by_model`` maps the user's actively subscribed model ids to
        their plans; each gets a per-model limit check and warnings.
        """
        now = now or utcnow()
        ranges: Dict[str, Optional[datetime]] = {
            "today": now.replace(hour=0, minute=0, second=0, microsecond=0),
            "thisWeek": now - timedelta(days=7),
            "thisMonth": start_of_month(now),
            "allTime": None,
        }
        cols = (UsageRecord.request_count, UsageRecord.token_count, UsageRecord.cost)

        totals: Dict[str, Dict[str, Any]] = {}
        with get_session_context() as session:
            for name, since in ranges.items():
                requests, tokens, cost = self._sum_since(session, user_id, None, since, *cols)
                totals[name] = {"requests": int(requests), "tokens": int(tokens), "cost": round(float(cost), 5)}
            (last_minute,) = self._sum_since(session, user_id, None, now - MINUTE_WINDOW, UsageRecord.request_count)
            recent = session.exec(
                select(UsageRecord)
                .where(UsageRecord.user_id == user_id)
                .order_by(UsageRecord.date.desc())
                .limit(5)
            ).all()

        subscriptions: List[Dict[str, Any]] = []
        warnings: List[str] = []
        for model_id, plan in (plans_by_model or {}).items():
            limits = self.check_limits(user_id, model_id, plan, now)
            subscriptions.append({"modelId": model_id, "planName": plan.name, "limits": limits.to_dict()})
            if limits.is_near_limit:
                warnings.append(f"Usage for model {model_id} is at or above {int(self.near_limit_threshold * 100)}% of plan limits")

        return {
            "usage": totals,
            "lastMinuteRequests": int(last_minute),
            "subscriptions": subscriptions,
            "warnings": warnings,
            "recentActivity": [
                {
                    "id": r.id,
                    "modelId": r.model_id,
                    "operation": r.operation,
                    "date": iso(r.date),
                    "tokens": r.token_count,
                    "cost": r.cost,
                    "success": r.success,
                }
                for r in recent
            ],
        }
    # ------------------------------------------------------------------
    # Period statistics
    # ------------------------------------------------------------------

    def stats(
        self,
        user_id: str,
        period: str = "month",
        model_id: Optional[str] = None,
        limit: int = 30,
        offset: int = 0,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Usage over one look-back period.

        The timeline is grouped per minute (hour), hour (day), day
        (week/month) or month (year), newest bucket first, and paginated
        with ``limit``/``offset``. Without ``model_id`` the ten most used
        models are broken out with their catalogue details.
        """
        now = now or utcnow()
        if period not in STATS_PERIODS:
            raise ValueError(f"period must be one of {', '.join(STATS_PERIODS)}")
        start, end = stats_window(period, now)
        unit = _STATS_BUCKET[period]

        stmt = sa_select(
            UsageRecord.date,
            UsageRecord.request_count,
            UsageRecord.token_count,
            UsageRecord.cost,
            UsageRecord.response_time_ms,
        ).where(
            UsageRecord.user_id == user_id,
            UsageRecord.date >= start,
            UsageRecord.date <= end,
        )
        if model_id is not None:
            stmt = stmt.where(UsageRecord.model_id == model_id)

        with get_session_context() as session:
            rows = session.execute(stmt).all()
            breakdown = None if model_id is not None else self._model_breakdown(session, user_id, start, end)

        buckets: Dict[datetime, Dict[str, float]] = {}
        totals = {"requests": 0, "tokens": 0, "cost": 0.0, "response_ms": 0, "sessions": 0}
        for date, requests, tokens, cost, response_ms in rows:
            slot = buckets.setdefault(
                _bucket_start(date, unit),
                {"requests": 0, "tokens": 0, "cost": 0.0, "response_ms": 0, "sessions": 0},
            )
            for acc in (slot, totals):
                acc["requests"] += requests
                acc["tokens"] += tokens
                acc["cost"] += cost
                acc["response_ms"] += response_ms
                acc["sessions"] += 1

        ordered = sorted(buckets.items(), key=lambda item: item[0], reverse=True)
        page = ordered[offset:offset + limit]
        timeline = [
            {
                "date": iso(bucket),
                "requests": int(acc["requests"]),
                "tokens": int(acc["tokens"]),
                "cost": round(acc["cost"], 5),
                "averageResponseTime": _avg_ms(acc["response_ms"], acc["sessions"]),
                "sessions": int(acc["sessions"]),
            }
            for bucket, acc in page
        ]

        total_requests = int(totals["requests"])
        total_cost = totals["cost"]
        avg_response = _avg_ms(totals["response_ms"], totals["sessions"])
        efficiency = 0.0
        if avg_response > 0 and total_cost > 0:
            efficiency = round(total_requests / (avg_response * total_cost), 2)

        return {
            "period": {"type": period, "interval": unit, "start": iso(start), "end": iso(end)},
            "totals": {
                "requests": total_requests,
                "tokens": int(totals["tokens"]),
                "cost": round(total_cost, 5),
                "averageResponseTime": avg_response,
                "sessions": int(totals["sessions"]),
            },
            "timeline": timeline,
            "modelBreakdown": breakdown,
            "efficiency": {
                "costPerRequest": round(total_cost / total_requests, 5) if total_requests else 0,
                "requestsPerInterval": round(total_requests / len(ordered)) if ordered else 0,
                "averageResponseTime": avg_response,
                "efficiency": efficiency,
            },
            "pagination": {
                "limit": limit,
                "offset": offset,
                "total": len(ordered),
                "hasMore": offset + limit < len(ordered),
            },
        }

    def _model_breakdown(self, session, user_id: str, start: datetime, end: datetime) -> List[Dict[str, Any]]:
        requests = func.coalesce(func.sum(UsageRecord.request_count), 0)
        stmt = (
            sa_select(
                UsageRecord.model_id,
                requests,
                func.coalesce(func.sum(UsageRecord.token_count), 0),
                func.coalesce(func.sum(UsageRecord.cost), 0),
                func.avg(UsageRecord.response_time_ms),
            )
            .where(UsageRecord.user_id == user_id, UsageRecord.date >= start, UsageRecord.date <= end)
            .group_by(UsageRecord.model_id)
            .order_by(requests.desc())
            .limit(MODEL_BREAKDOWN_SIZE)
        )
        grouped = session.execute(stmt).all()
        if not grouped:
            return []

        ids = [row[0] for row in grouped]
        models = {m.id: m for m in session.exec(select(AIModel).where(AIModel.id.in_(ids))).all()}
        creator_ids = {m.creator_id for m in models.values()}
        creators = {
            c.id: c.display_name
            for c in session.exec(select(CreatorProfile).where(CreatorProfile.id.in_(creator_ids))).all()
        }

        breakdown = []
        for mid, req, tokens, cost, avg_response in grouped:
            model = models.get(mid)
            if model is None:
                continue
            breakdown.append({
                "model": {
                    "id": model.id,
                    "name": model.name,
                    "category": model.category,
                    "creator": creators.get(model.creator_id),
                },
                "stats": {
                    "requests": int(req),
                    "tokens": int(tokens),
                    "cost": round(float(cost), 5),
                    "averageResponseTime": round(float(avg_response or 0)),
                },
            })
        return breakdown


usage_ledger = UsageLedger()
