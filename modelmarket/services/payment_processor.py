"""
Payment Processor: idempotent Payment upsert keyed by Helio transaction id
===========================================================================

PURPOSE:
    Records one Payment per external transaction id. A redelivered webhook
    finds the existing row and gets ``is_new=False``; the webhook route then
    skips every downstream effect (subscription transition, earnings).

    Exception: a successful CREATED/STARTED/RENEWED payment that never got
    linked to a subscription comes back with ``pending=True``. Its earlier
    delivery failed after the insert, so the route applies it again.

FAILURE:
    Storage errors raise MarketError(MKT-DB-001). There is no internal retry:
    the route answers 500 and Helio redelivers.

A concurrent delivery that loses the unique-constraint race on
``external_id`` is reported as an existing payment, not an error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlmodel import select

from modelmarket.core.database import get_session_context
from modelmarket.core.errors import PERSISTENCE_ERROR, MarketError
from modelmarket.models.billing import Payment, PaymentStatus
from modelmarket.services.webhook_events import WebhookEvent, WebhookEventKind

logger = logging.getLogger(__name__)

__all__ = ["PaymentOutcome", "PaymentProcessor", "payment_processor"]


_APPLYING_KINDS = (WebhookEventKind.CREATED, WebhookEventKind.STARTED, WebhookEventKind.RENEWED)


@dataclass(frozen=True)
class PaymentOutcome:
    payment: Payment
    is_new: bool
    pending: bool = False


def _is_pending(payment: Payment, event: WebhookEvent) -> bool:
    return (
        event.kind in _APPLYING_KINDS
        and payment.status == PaymentStatus.COMPLETED
        and payment.subscription_id is None
    )


def _payment_from_event(event: WebhookEvent) -> Payment:
    return Payment(
        external_id=event.transaction_id,
        event=event.raw_event.upper(),
        amount=event.amount,
        currency=event.currency,
        user_id=event.user_id,
        model_id=event.model_id,
        plan_id=event.plan_id,
        paylink_id=event.paylink_id,
        transaction_signature=event.transaction_signature,
        raw_status=event.status,
        status=PaymentStatus.COMPLETED if event.succeeded else PaymentStatus.FAILED,
    )


class PaymentProcessor:
    """Maps webhook events onto Payment rows, at most once per transaction id."""

    def _find(self, session, external_id: str):
        stmt = select(Payment).where(Payment.external_id == external_id)
        return session.exec(stmt).first()

    def record(self, event: WebhookEvent) -> PaymentOutcome:
        """Insert the Payment for *event*, or return the one already stored."""
        try:
            with get_session_context() as session:
                existing = self._find(session, event.transaction_id)
                if existing is not None:
                    if _is_pending(existing, event):
                        logger.warning(
                            "Redelivery for transaction %s: payment %s has no subscription yet, re-applying",
                            event.transaction_id,
                            existing.id,
                        )
                        return PaymentOutcome(payment=existing, is_new=False, pending=True)
                    logger.info(
                        "Duplicate webhook delivery for transaction %s (payment %s)",
                        event.transaction_id,
                        existing.id,
                    )
                    return PaymentOutcome(payment=existing, is_new=False)

                payment = _payment_from_event(event)
                session.add(payment)
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = self._find(session, event.transaction_id)
                    if existing is None:
                        raise
                    logger.info("Lost insert race for transaction %s", event.transaction_id)
                    return PaymentOutcome(payment=existing, is_new=False)

                session.refresh(payment)
                logger.info(
                    "Recorded payment %s: event=%s status=%s amount=%.6f %s",
                    payment.id,
                    payment.event,
                    payment.status,
                    payment.amount,
                    payment.currency,
                )
                return PaymentOutcome(payment=payment, is_new=True)
        except SQLAlchemyError as exc:
            raise MarketError(
                PERSISTENCE_ERROR,
                detail=f"payment upsert failed: {exc}",
                context={"transaction_id": event.transaction_id},
            ) from exc

    def attach_subscription(self, payment_id: str, subscription_id: str) -> None:
        """Link a payment to the subscription it created or renewed."""
        try:
            with get_session_context() as session:
                payment = session.get(Payment, payment_id)
                if payment is None:
                    return
                payment.subscription_id = subscription_id
                session.add(payment)
                session.commit()
        except SQLAlchemyError as exc:
            raise MarketError(
                PERSISTENCE_ERROR,
                detail=f"payment link failed: {exc}",
                context={"payment_id": payment_id},
            ) from exc

    def get_by_external_id(self, external_id: str):
        with get_session_context() as session:
            return self._find(session, external_id)


payment_processor = PaymentProcessor()
