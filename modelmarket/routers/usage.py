"""
Usage endpoints
===============

- POST /api/usage/track     record one operation against a model
- GET  /api/usage/summary   dashboard totals and per-subscription limits
- GET  /api/usage/stats     one period (hour .. year): timeline, per-model
                            breakdown, efficiency and plan limits

Inference requires an active subscription. Tracking only records; the plan
limit gate lives on POST /api/user/access.
"""

import logging
from typing import Dict, Literal, Optional

from fastapi import APIRouter, Depends, Query

from modelmarket.auth.api_key_auth import AuthenticatedUser, get_current_user
from modelmarket.core.errors import ACCESS_DENIED, MODEL_UNAVAILABLE, MarketError
from modelmarket.core.timeutil import iso, utcnow
from modelmarket.models.marketplace import ModelStatus, PricingPlan
from modelmarket.routers.schemas import TrackUsageRequest
from modelmarket.services.catalogue import get_model, get_plan
from modelmarket.services.earnings_service import earnings_service
from modelmarket.services.rate_limiter import rate_limit
from modelmarket.services.subscription_service import subscription_service
from modelmarket.services.usage_ledger import usage_ledger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/track", summary="Track usage", dependencies=[Depends(rate_limit("general"))])
async def track_usage(
    body: TrackUsageRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    now = utcnow()
    model = get_model(body.model_id)
    if model is None or model.status != ModelStatus.PUBLISHED:
        raise MarketError(MODEL_UNAVAILABLE, detail=f"model {body.model_id} missing or not published")

    subscription = subscription_service.find_active(user.user_id, model.id, now)
    if body.operation == "inference" and subscription is None:
        raise MarketError(
            ACCESS_DENIED,
            detail=f"user {user.user_id} has no active subscription to {model.id}",
            context={"model_id": model.id},
        )

    entry = usage_ledger.record_usage(
        user_id=user.user_id,
        model_id=model.id,
        operation=body.operation,
        tokens_used=body.tokens_used,
        response_time_ms=body.response_time,
        success=body.success,
        error_type=body.error_type,
        metadata=body.metadata,
        now=now,
    )
    usage_ledger.bump_model_stats(model.id, body.operation)

    if body.operation == "inference" and body.success and entry.cost > 0:
        earnings_service.credit(model.creator_id, entry.cost, "usage", entry.usage_id)

    plan = get_plan(subscription.plan_id) if subscription else None
    limits = usage_ledger.check_limits(user.user_id, model.id, plan, now)

    return {
        "usageId": entry.usage_id,
        "timestamp": iso(entry.timestamp),
        "cost": entry.cost,
        "limits": limits.to_dict(),
    }


@router.get("/summary", summary="Usage summary")
async def usage_summary(user: AuthenticatedUser = Depends(get_current_user)):
    now = utcnow()
    plans_by_model: Dict[str, PricingPlan] = {}
    for sub in subscription_service.list_for_user(user.user_id, active_only=True, now=now):
        plan = get_plan(sub.plan_id)
        if plan is not None:
            plans_by_model[sub.model_id] = plan
    return usage_ledger.summarize(user.user_id, plans_by_model, now)


@router.get("/stats", summary="Usage statistics")
async def usage_stats(
    period: Literal["hour", "day", "week", "month", "year"] = Query("month"),
    model_id: Optional[str] = Query(None, alias="modelId"),
    limit: int = Query(30, ge=1, le=500),
    offset: int = Query(0, ge=0),
    user: AuthenticatedUser = Depends(get_current_user),
):
    now = utcnow()
    data = usage_ledger.stats(user.user_id, period=period, model_id=model_id, limit=limit, offset=offset, now=now)

    limits = []
    for sub in subscription_service.list_for_user(user.user_id, active_only=True, now=now):
        if model_id and sub.model_id != model_id:
            continue
        plan = get_plan(sub.plan_id)
        model = get_model(sub.model_id)
        limits.append({
            "modelId": sub.model_id,
            "modelName": model.name if model else None,
            "limits": {
                "monthlyRequests": plan.requests_per_month if plan else None,
                "minuteRequests": plan.requests_per_minute if plan else None,
            },
            "expiresAt": iso(sub.current_period_end),
        })
    data["limits"] = limits
    return data
