"""
Access endpoints
================

- GET  /api/user/access?modelId=m            single model check
- GET  /api/user/access?modelIds=a,b         batch check
- GET  /api/user/access                      active subscriptions + summary
- POST /api/user/access {modelId, operation} gate: 403 without a
  subscription, 429 over plan limits (inference only)
"""

import logging
from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, Query

from modelmarket.auth.api_key_auth import AuthenticatedUser, get_current_user
from modelmarket.core.errors import ACCESS_DENIED, MarketError
from modelmarket.core.timeutil import iso, utcnow
from modelmarket.routers.schemas import AccessCheckRequest
from modelmarket.services.catalogue import get_plan
from modelmarket.services.rate_limiter import rate_limit
from modelmarket.services.subscription_service import serialize_subscription, subscription_service
from modelmarket.services.usage_ledger import usage_ledger

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("", summary="Check model access")
async def get_access(
    model_id: Optional[str] = Query(None, alias="modelId"),
    model_ids: Optional[str] = Query(None, alias="modelIds", description="Comma-separated model ids"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    now = utcnow()

    if model_id:
        sub = subscription_service.find_active(user.user_id, model_id, now)
        return {
            "modelId": model_id,
            "hasAccess": sub is not None,
            "subscription": serialize_subscription(sub, now) if sub else None,
            "expiresAt": iso(sub.current_period_end) if sub else None,
        }

    ids = [m.strip() for m in (model_ids or "").split(",") if m.strip()]
    if ids:
        access = []
        for mid in ids:
            sub = subscription_service.find_active(user.user_id, mid, now)
            access.append({
                "modelId": mid,
                "hasAccess": sub is not None,
                "expiresAt": iso(sub.current_period_end) if sub else None,
            })
        return {"access": access}

    active = subscription_service.list_for_user(user.user_id, active_only=True, now=now)
    week_out = now + timedelta(days=7)
    return {
        "activeSubscriptions": [serialize_subscription(s, now) for s in active],
        "summary": {
            "totalActive": len(active),
            "totalModelsWithAccess": len({s.model_id for s in active}),
            "expiringThisWeek": sum(1 for s in active if s.current_period_end <= week_out),
        },
    }


@router.post("", summary="Gate a model operation", dependencies=[Depends(rate_limit("general"))])
async def check_access(
    body: AccessCheckRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    now = utcnow()
    sub = subscription_service.find_active(user.user_id, body.model_id, now)
    if sub is None:
        raise MarketError(
            ACCESS_DENIED,
            detail=f"user {user.user_id} has no active subscription to {body.model_id}",
            context={"model_id": body.model_id},
        )

    usage = None
    if body.operation == "inference":
        limits = usage_ledger.check_limits(user.user_id, body.model_id, get_plan(sub.plan_id), now)
        usage_ledger.enforce_limits(limits, now)
        usage = limits.to_dict()

    return {
        "hasAccess": True,
        "subscription": serialize_subscription(sub, now),
        "expiresAt": iso(sub.current_period_end),
        "usage": usage,
    }
