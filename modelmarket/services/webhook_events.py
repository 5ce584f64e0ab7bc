"""
Helio webhook payload parser.

Turns the raw (already authenticated) request body into a WebhookEvent.
Pure transform: no I/O, no logging of payload contents.

Wire shape::

    {"event": "CREATED",
     "transactionObject": {
        "id": "...", "paylinkId": "...",
        "meta": {"transactionStatus": "SUCCESS", "amount": "1000000",
                 "transactionSignature": "...", "currency": "USDC",
                 "customerDetails": {"email": "..."},
                 "userId": "...", "modelId": "...", "planId": "...",
                 "duration": "month"}}}
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from modelmarket.core.errors import MALFORMED_PAYLOAD, MarketError

__all__ = ["WebhookEventKind", "WebhookEvent", "parse_webhook_event"]

# USDC (and Helio's minimal units generally) carry 6 decimals
MINIMAL_UNITS_PER_TOKEN = 1_000_000

_METADATA_KEYS = ("userId", "modelId", "planId", "creatorId", "duration", "renewalFor", "subscriptionType")


class WebhookEventKind(str, Enum):
    CREATED = "CREATED"
    STARTED = "STARTED"
    RENEWED = "RENEWED"
    ENDED = "ENDED"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def from_wire(cls, value: str) -> "WebhookEventKind":
        try:
            kind = cls(value.upper())
        except ValueError:
            return cls.UNRECOGNIZED
        return kind


@dataclass(frozen=True)
class WebhookEvent:
    kind: WebhookEventKind
    raw_event: str
    transaction_id: str
    paylink_id: Optional[str]
    status: str
    transaction_signature: Optional[str] = None
    amount: float = 0.0
    currency: str = "USDC"
    customer_email: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status.upper() == "SUCCESS"

    @property
    def user_id(self) -> Optional[str]:
        return _str_or_none(self.metadata.get("userId"))

    @property
    def model_id(self) -> Optional[str]:
        return _str_or_none(self.metadata.get("modelId"))

    @property
    def plan_id(self) -> Optional[str]:
        return _str_or_none(self.metadata.get("planId"))

    @property
    def duration(self) -> Optional[str]:
        return _str_or_none(self.metadata.get("duration"))

    @property
    def renewal_for(self) -> Optional[str]:
        return _str_or_none(self.metadata.get("renewalFor"))


def _str_or_none(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    return str(value)


def _malformed(reason: str) -> MarketError:
    return MarketError(MALFORMED_PAYLOAD, detail=reason)


def _coerce_mapping(value: Any) -> Dict[str, Any]:
    """Accept a dict or a JSON-encoded object; anything else is empty."""
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip().startswith("{"):
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _collect_metadata(meta: Dict[str, Any]) -> Dict[str, Any]:
    """Merge merchant metadata from the places Helio may put it.

    Precedence (lowest first): customerDetails.additionalJSON, meta.metadata,
    keys set directly on meta.
    """
    merged: Dict[str, Any] = {}
    customer = meta.get("customerDetails")
    if isinstance(customer, dict):
        merged.update(_coerce_mapping(customer.get("additionalJSON")))
    merged.update(_coerce_mapping(meta.get("metadata")))
    for key in _METADATA_KEYS:
        if meta.get(key) not in (None, ""):
            merged[key] = meta[key]
    return merged


def _parse_amount(raw: Any) -> float:
    try:
        value = float(raw)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        raise _malformed(f"non-finite amount {raw!r}")
    return value / MINIMAL_UNITS_PER_TOKEN


def parse_webhook_event(body: bytes) -> WebhookEvent:
    """Decode a Helio webhook body.

    Raises:
        MarketError(MKT-API-001): body is not JSON, or a required field
            (event, transactionObject.id, transactionObject.meta,
            meta.transactionStatus) is missing.
    """
    try:
        data = json.loads(body)
    except (ValueError, UnicodeDecodeError) as exc:
        raise _malformed(f"invalid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise _malformed("top-level payload is not an object")

    raw_event = data.get("event")
    if not isinstance(raw_event, str) or not raw_event:
        raise _malformed("missing event")

    tx = data.get("transactionObject")
    if not isinstance(tx, dict):
        raise _malformed("missing transactionObject")

    tx_id = tx.get("id")
    if tx_id in (None, ""):
        raise _malformed("missing transactionObject.id")

    meta = tx.get("meta")
    if not isinstance(meta, dict):
        raise _malformed("missing transactionObject.meta")

    status = meta.get("transactionStatus")
    if not isinstance(status, str) or not status:
        raise _malformed("missing meta.transactionStatus")

    customer = meta.get("customerDetails")
    email = customer.get("email") if isinstance(customer, dict) else None

    return WebhookEvent(
        kind=WebhookEventKind.from_wire(raw_event),
        raw_event=raw_event,
        transaction_id=str(tx_id),
        paylink_id=_str_or_none(tx.get("paylinkId")),
        status=status,
        transaction_signature=_str_or_none(meta.get("transactionSignature")),
        amount=_parse_amount(meta.get("amount")),
        currency=str(meta.get("currency") or "USDC"),
        customer_email=_str_or_none(email),
        metadata=_collect_metadata(meta),
    )
