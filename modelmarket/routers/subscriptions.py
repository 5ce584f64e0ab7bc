"""
Subscription endpoints
======================

- GET  /api/subscriptions              list the caller's subscriptions
- POST /api/subscriptions              start checkout (Helio pay link)
- GET  /api/subscriptions/{id}         detail + live Helio payment status
- POST /api/subscriptions/{id}/renew   renewal pay link and the window it covers

Subscriptions are only ever activated by the Helio webhook; these routes
create pay links and read state.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query

from modelmarket.auth.api_key_auth import AuthenticatedUser, get_current_user
from modelmarket.core.timeutil import iso, utcnow
from modelmarket.routers.schemas import CheckoutRequest, RenewRequest
from modelmarket.services.catalogue import get_user_email
from modelmarket.services.helio_client import helio_client
from modelmarket.services.rate_limiter import rate_limit
from modelmarket.services.subscription_service import serialize_subscription, subscription_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _email_for(user: AuthenticatedUser) -> Optional[str]:
    return user.email or get_user_email(user.user_id)


@router.get("", summary="List subscriptions")
async def list_subscriptions(
    status: Optional[str] = Query(None, description="ACTIVE, CANCELLED or EXPIRED"),
    active_only: bool = Query(False, alias="activeOnly"),
    user: AuthenticatedUser = Depends(get_current_user),
):
    now = utcnow()
    subs = subscription_service.list_for_user(user.user_id, status=status, active_only=active_only, now=now)
    return {
        "subscriptions": [serialize_subscription(s, now) for s in subs],
        "count": len(subs),
    }


@router.post("", summary="Start checkout", dependencies=[Depends(rate_limit("general"))])
async def create_checkout(
    body: CheckoutRequest,
    user: AuthenticatedUser = Depends(get_current_user),
):
    offer = await subscription_service.start_checkout(
        user_id=user.user_id,
        model_id=body.model_id,
        plan_id=body.plan_id,
        duration=body.duration,
        customer_email=_email_for(user),
    )
    logger.info("Checkout started: user=%s model=%s paylink=%s", user.user_id, body.model_id, offer.paylink.id)
    return {
        "url": offer.paylink.url,
        "paylinkId": offer.paylink.id,
        "amount": offer.amount,
        "currency": offer.currency,
        "duration": offer.duration,
        "modelId": offer.model_id,
        "planId": offer.plan_id,
    }


@router.get("/{subscription_id}", summary="Subscription detail")
async def get_subscription(
    subscription_id: str,
    user: AuthenticatedUser = Depends(get_current_user),
):
    sub = subscription_service.get_for_user(subscription_id, user.user_id)
    now = utcnow()

    payment_info = None
    if sub.helio_transaction_id:
        tx = await helio_client.get_transaction_status(sub.helio_transaction_id)
        payment_info = {
            "transactionId": tx.transaction_id,
            "status": tx.status,
            "transactionSignature": tx.transaction_signature,
        }

    data = serialize_subscription(sub, now)
    return {
        "subscription": data,
        "statusInfo": data["statusInfo"],
        "paymentInfo": payment_info,
    }


@router.post("/{subscription_id}/renew", summary="Renew subscription", dependencies=[Depends(rate_limit("general"))])
async def renew_subscription(
    subscription_id: str,
    body: Optional[RenewRequest] = None,
    user: AuthenticatedUser = Depends(get_current_user),
):
    body = body or RenewRequest()
    now = utcnow()
    offer = await subscription_service.request_renewal(
        subscription_id=subscription_id,
        user_id=user.user_id,
        duration=body.duration,
        customer_email=_email_for(user),
        now=now,
    )
    return {
        "currentSubscription": serialize_subscription(offer.subscription, now),
        "renewal": {
            "url": offer.paylink.url,
            "paylinkId": offer.paylink.id,
            "amount": offer.amount,
            "currency": offer.currency,
            "duration": offer.duration,
            "willStartAt": iso(offer.will_start_at),
            "willEndAt": iso(offer.will_end_at),
        },
    }
