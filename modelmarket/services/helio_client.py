"""
Helio API Client
================

PURPOSE:
    Outbound calls to the Helio crypto-payment API:
    POST /paylink                       → one-off pay link for a model plan
    POST /paylink/subscription          → recurring pay link
    POST /webhook/paylink[/subscription] → register our webhook for a pay link
    GET  /transaction/{id}              → transaction status lookup

CONFIGURATION (env vars with MODELMARKET_ prefix):
    MODELMARKET_HELIO_API_KEY      : public key, passed as ?apiKey= on webhook registration
    MODELMARKET_HELIO_API_SECRET   : sent as Bearer token on every call
    MODELMARKET_HELIO_ENVIRONMENT  : production → api.hel.io, development → api.dev.hel.io
    MODELMARKET_HELIO_TIMEOUT_S    : per-request timeout (default 5s)

Status lookups never raise: a timeout or provider error degrades to
``status="unknown"`` so subscription pages still render.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from modelmarket.config import settings
from modelmarket.core.errors import (
    PAYMENT_PROVIDER_ERROR,
    PAYMENT_PROVIDER_UNCONFIGURED,
    MarketError,
)

logger = logging.getLogger(__name__)

__all__ = ["HelioClient", "PayLink", "TransactionStatus", "helio_client"]

PAYMENT_WEBHOOK_EVENTS = ["CREATED"]
SUBSCRIPTION_WEBHOOK_EVENTS = ["STARTED", "RENEWED", "ENDED"]

_INTERVAL_BY_DURATION = {
    "hour": "HOUR",
    "day": "DAY",
    "week": "WEEK",
    "month": "MONTH",
    "year": "YEAR",
}


@dataclass(frozen=True)
class PayLink:
    id: str
    url: str


@dataclass(frozen=True)
class TransactionStatus:
    transaction_id: str
    status: str
    transaction_signature: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class HelioClient:
    """Thin async wrapper over the Helio REST API."""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    # ------------------------------------------------------------------
    # Plumbing
    # ------------------------------------------------------------------

    @property
    def configured(self) -> bool:
        return bool(settings.helio_api_key and settings.helio_api_secret)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=settings.helio_base_url,
                timeout=httpx.Timeout(settings.helio_timeout_s),
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {settings.helio_api_secret}",
            "Content-Type": "application/json",
        }

    def _require_credentials(self) -> None:
        if not self.configured:
            raise MarketError(
                PAYMENT_PROVIDER_UNCONFIGURED,
                detail="MODELMARKET_HELIO_API_KEY / MODELMARKET_HELIO_API_SECRET not set",
            )

    async def _post(self, path: str, payload: Dict[str, Any], params: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """POST to Helio; any transport or HTTP failure becomes MKT-PAY-001."""
        self._require_credentials()
        client = self._get_client()
        try:
            response = await client.post(path, json=payload, params=params, headers=self._headers())
        except httpx.TimeoutException as exc:
            logger.error("Timeout calling Helio POST %s: %s", path, exc)
            raise MarketError(PAYMENT_PROVIDER_ERROR, detail=f"timeout on {path}") from exc
        except httpx.RequestError as exc:
            logger.error("Connection error to Helio POST %s: %s", path, exc)
            raise MarketError(PAYMENT_PROVIDER_ERROR, detail=f"connection error on {path}") from exc

        if response.status_code >= 400:
            logger.error("Helio POST %s returned %d: %s", path, response.status_code, response.text[:500])
            raise MarketError(
                PAYMENT_PROVIDER_ERROR,
                detail=f"Helio returned {response.status_code} on {path}",
                context={"status_code": response.status_code},
            )

        try:
            return response.json()
        except ValueError as exc:
            raise MarketError(PAYMENT_PROVIDER_ERROR, detail=f"non-JSON response on {path}") from exc

    @staticmethod
    def _paylink_from(data: Any, path: str) -> PayLink:
        if not isinstance(data, dict):
            raise MarketError(PAYMENT_PROVIDER_ERROR, detail=f"unexpected response shape on {path}")
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        paylink_id = body.get("id") or body.get("paylinkId")
        url = body.get("url")
        if not paylink_id or not url:
            raise MarketError(PAYMENT_PROVIDER_ERROR, detail=f"pay link response missing id/url on {path}")
        return PayLink(id=str(paylink_id), url=str(url))

    # ------------------------------------------------------------------
    # Pay links
    # ------------------------------------------------------------------

    async def create_paylink(
        self,
        model_id: str,
        plan_id: str,
        amount: float,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayLink:
        payload = {
            "amount": amount,
            "currency": currency or settings.helio_currency,
            "successUrl": f"{settings.public_url}/payment/success",
            "cancelUrl": f"{settings.public_url}/payment/cancel",
            "customerEmail": customer_email,
            "metadata": {"modelId": model_id, "planId": plan_id, **(metadata or {})},
        }
        data = await self._post("/paylink", payload)
        return self._paylink_from(data, "/paylink")

    async def create_subscription_paylink(
        self,
        model_id: str,
        plan_id: str,
        amount: float,
        duration: str,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayLink:
        payload = {
            "amount": amount,
            "currency": currency or settings.helio_currency,
            "interval": _INTERVAL_BY_DURATION.get(duration, "MONTH"),
            "successUrl": f"{settings.public_url}/subscription/success",
            "cancelUrl": f"{settings.public_url}/subscription/cancel",
            "customerEmail": customer_email,
            "metadata": {"modelId": model_id, "planId": plan_id, **(metadata or {})},
        }
        data = await self._post("/paylink/subscription", payload)
        return self._paylink_from(data, "/paylink/subscription")

    async def register_webhook(
        self,
        paylink_id: str,
        target_url: str,
        events: List[str],
        subscription: bool = False,
    ) -> Dict[str, Any]:
        path = "/webhook/paylink/subscription" if subscription else "/webhook/paylink"
        payload = {
            "paylinkId": paylink_id,
            "targetUrl": target_url,
            "events": events,
        }
        return await self._post(path, payload, params={"apiKey": settings.helio_api_key or ""})

    async def create_model_payment(
        self,
        model_id: str,
        plan_id: str,
        amount: float,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayLink:
        """Create a one-off pay link and point its CREATED webhook at us."""
        paylink = await self.create_paylink(
            model_id=model_id,
            plan_id=plan_id,
            amount=amount,
            customer_email=customer_email,
            metadata=metadata,
        )
        await self.register_webhook(
            paylink.id,
            f"{settings.public_url}/api/webhooks/helio",
            PAYMENT_WEBHOOK_EVENTS,
        )
        logger.info("Created Helio pay link %s for model %s plan %s", paylink.id, model_id, plan_id)
        return paylink

    async def create_model_subscription(
        self,
        model_id: str,
        plan_id: str,
        amount: float,
        duration: str,
        customer_email: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> PayLink:
        """Create a recurring pay link and register the lifecycle webhook."""
        paylink = await self.create_subscription_paylink(
            model_id=model_id,
            plan_id=plan_id,
            amount=amount,
            duration=duration,
            customer_email=customer_email,
            metadata=metadata,
        )
        await self.register_webhook(
            paylink.id,
            f"{settings.public_url}/api/webhooks/helio/subscription",
            SUBSCRIPTION_WEBHOOK_EVENTS,
            subscription=True,
        )
        logger.info("Created Helio subscription pay link %s for model %s", paylink.id, model_id)
        return paylink

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def get_transaction_status(self, transaction_id: str) -> TransactionStatus:
        """Fetch a transaction's status, degrading to ``unknown`` on any failure."""
        if not self.configured:
            return TransactionStatus(transaction_id=transaction_id, status="unknown")

        client = self._get_client()
        try:
            response = await client.get(f"/transaction/{transaction_id}", headers=self._headers())
            response.raise_for_status()
            data = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Could not fetch Helio status for %s: %s", transaction_id, exc)
            return TransactionStatus(transaction_id=transaction_id, status="unknown")

        if not isinstance(data, dict):
            return TransactionStatus(transaction_id=transaction_id, status="unknown")
        body = data.get("data") if isinstance(data.get("data"), dict) else data
        meta = body.get("meta") if isinstance(body.get("meta"), dict) else {}
        status = body.get("status") or meta.get("transactionStatus") or "unknown"
        return TransactionStatus(
            transaction_id=transaction_id,
            status=str(status),
            transaction_signature=body.get("transactionSignature") or meta.get("transactionSignature"),
            raw=body,
        )


helio_client = HelioClient()
