"""
Helio webhook ingress.

- POST /api/webhooks/helio               one-off pay links (CREATED)
- POST /api/webhooks/helio/subscription  recurring pay links (STARTED / RENEWED / ENDED)

Both run the same pipeline:
    verify bearer → parse → record payment (idempotent) → reconcile
    subscription → credit creator earnings

Authentication and parsing failures go through the registry error handler
(401 / 500 / 400). Once a payment is recorded, processing failures answer
``{"success": false, "error": <code>, "message": <safe message>}`` with the
registry status, so Helio redelivers on 5xx only.

A redelivery of a successful payment that never reached its subscription
(the earlier attempt failed after the insert) is applied again; reconcile
is idempotent per transaction id.
"""

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from modelmarket.config import settings
from modelmarket.core.errors import (
    INVALID_SIGNATURE,
    UNEXPECTED_ERROR,
    WEBHOOK_SECRET_MISSING,
    MarketError,
)
from modelmarket.core.errors.middleware import log_market_error
from modelmarket.services.earnings_service import earnings_service
from modelmarket.services.payment_processor import payment_processor
from modelmarket.services.subscription_service import subscription_service
from modelmarket.services.webhook_events import WebhookEventKind, parse_webhook_event
from modelmarket.services.webhook_verifier import verify_bearer_token

logger = logging.getLogger(__name__)

router = APIRouter()

_EARNING_EVENTS = (WebhookEventKind.CREATED, WebhookEventKind.STARTED, WebhookEventKind.RENEWED)


async def _handle_helio_webhook(request: Request, channel: str) -> JSONResponse:
    body = await request.body()

    secret = settings.helio_webhook_secret
    if not secret:
        raise MarketError(WEBHOOK_SECRET_MISSING, detail="MODELMARKET_HELIO_WEBHOOK_SECRET not set")
    if not verify_bearer_token(body, request.headers.get("authorization"), secret):
        raise MarketError(INVALID_SIGNATURE, detail=f"bad or missing bearer on {channel} webhook")

    event = parse_webhook_event(body)
    logger.info(
        "Helio webhook received: channel=%s event=%s tx=%s paylink=%s status=%s",
        channel, event.raw_event, event.transaction_id, event.paylink_id, event.status,
    )

    try:
        outcome = payment_processor.record(event)
        payment = outcome.payment
        if not outcome.is_new and not outcome.pending:
            logger.info("Duplicate Helio delivery for tx %s; skipping side effects", event.transaction_id)
            return JSONResponse(
                status_code=200,
                content={
                    "success": True,
                    "paymentId": payment.id,
                    "subscriptionId": payment.subscription_id,
                    "duplicate": True,
                },
            )

        subscription = subscription_service.reconcile(event, payment)
        if subscription is not None:
            payment_processor.attach_subscription(payment.id, subscription.id)

        if event.succeeded and event.kind in _EARNING_EVENTS and subscription is not None:
            earnings_service.credit_for_model(payment.model_id, payment.amount, "payment", payment.external_id)

    except MarketError as exc:
        entry = log_market_error(exc)
        return JSONResponse(
            status_code=entry.http_status if entry else 500,
            content={
                "success": False,
                "error": exc.code,
                "message": entry.safe_message if entry else "Webhook processing failed.",
            },
        )
    except Exception:
        logger.exception("Unexpected error processing Helio webhook tx=%s", event.transaction_id)
        return JSONResponse(
            status_code=500,
            content={"success": False, "error": UNEXPECTED_ERROR, "message": "Webhook processing failed."},
        )

    return JSONResponse(
        status_code=200,
        content={
            "success": True,
            "paymentId": payment.id,
            "subscriptionId": subscription.id if subscription is not None else None,
            "duplicate": False,
        },
    )


@router.post("/helio", summary="Helio payment webhook")
async def helio_webhook(request: Request):
    return await _handle_helio_webhook(request, "payment")


@router.post("/helio/subscription", summary="Helio subscription webhook")
async def helio_subscription_webhook(request: Request):
    return await _handle_helio_webhook(request, "subscription")
