"""
Pytest configuration for ModelMarket tests.
Sets environment variables before any modelmarket import.
"""

import json
import os
import tempfile

# Auth disable requires debug=True AND environment=development
os.environ["MODELMARKET_AUTH_ENABLED"] = "false"
os.environ["MODELMARKET_DEBUG"] = "true"
os.environ["MODELMARKET_ENVIRONMENT"] = "development"

_test_data_dir = tempfile.mkdtemp(prefix="modelmarket_test_")
os.environ.setdefault("MODELMARKET_DATA_DIRECTORY", _test_data_dir)
os.environ.setdefault("MODELMARKET_LOG_DIR", os.path.join(_test_data_dir, "logs"))
os.environ.setdefault("MODELMARKET_APIKEY_HMAC_SECRET", "test-hmac-secret")
os.environ.setdefault("MODELMARKET_HELIO_WEBHOOK_SECRET", "test-webhook-secret")
os.environ.setdefault("MODELMARKET_HELIO_API_KEY", "test-helio-key")
os.environ.setdefault("MODELMARKET_HELIO_API_SECRET", "test-helio-secret")
os.environ.setdefault("DATABASE_URL", f"sqlite:///{_test_data_dir}/test.db")

from datetime import timedelta  # noqa: E402
from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402
from sqlmodel import SQLModel  # noqa: E402

import modelmarket.models  # noqa: E402,F401  registers tables
from modelmarket.core.database import get_engine, get_session_context  # noqa: E402

SQLModel.metadata.create_all(get_engine())

# Load error registry so MarketError returns correct HTTP status codes
from modelmarket.core.errors.registry import error_registry  # noqa: E402

error_registry.load()

from modelmarket.auth.api_key_auth import DEV_USER_ID, api_key_cache  # noqa: E402
from modelmarket.core.timeutil import utcnow  # noqa: E402
from modelmarket.models.billing import Subscription, SubscriptionStatus  # noqa: E402
from modelmarket.models.marketplace import (  # noqa: E402
    AIModel,
    CreatorProfile,
    ModelStatus,
    PlanUnit,
    PricingPlan,
    User,
)
from modelmarket.services.rate_limiter import PRESETS, get_limiter  # noqa: E402

WEBHOOK_SECRET = "test-webhook-secret"


@pytest.fixture(autouse=True)
def _clean_state():
    """Empty every table and reset in-process limiter/auth caches after each test."""
    yield
    with get_session_context() as session:
        for table in reversed(SQLModel.metadata.sorted_tables):
            session.execute(table.delete())
        session.commit()
    for name in PRESETS:
        get_limiter(name).reset()
    api_key_cache.clear()


@pytest.fixture
def market():
    """A published model with a monthly plan, its creator, and a buyer.

    The buyer's id is the dev user's id, so HTTP tests running with auth
    disabled act as this buyer.
    """
    creator_user = User(email="creator@example.com", name="Creator")
    buyer = User(id=DEV_USER_ID, email="buyer@example.com", name="Buyer")
    with get_session_context() as session:
        session.add(creator_user)
        session.add(buyer)
        session.commit()

        creator = CreatorProfile(user_id=creator_user.id, display_name="Creator")
        session.add(creator)
        session.commit()

        model = AIModel(
            creator_id=creator.id,
            name="Sentiment Pro",
            slug="sentiment-pro",
            category="nlp",
            status=ModelStatus.PUBLISHED,
        )
        session.add(model)
        session.commit()

        plan = PricingPlan(
            model_id=model.id,
            name="Pro",
            price=50.0,
            unit=PlanUnit.MONTHLY,
            requests_per_month=100,
            requests_per_minute=10,
        )
        session.add(plan)
        session.commit()

        for obj in (creator_user, buyer, creator, model, plan):
            session.refresh(obj)

    return SimpleNamespace(creator_user=creator_user, buyer=buyer, creator=creator, model=model, plan=plan)


@pytest.fixture
def make_subscription():
    """Insert a subscription row directly."""

    def _make(user_id, model_id, plan_id, status=SubscriptionStatus.ACTIVE, ends_in=timedelta(days=30), now=None):
        now = now or utcnow()
        sub = Subscription(
            user_id=user_id,
            model_id=model_id,
            plan_id=plan_id,
            status=status,
            current_period_start=now - timedelta(days=1),
            current_period_end=now + ends_in,
            created_at=now,
            updated_at=now,
        )
        with get_session_context() as session:
            session.add(sub)
            session.commit()
            session.refresh(sub)
        return sub

    return _make


@pytest.fixture
def helio_payload():
    """Build a Helio webhook body (bytes)."""

    def _build(event="CREATED", tx_id="tx-1", status="SUCCESS", amount="50000000", **metadata):
        meta = {
            "transactionStatus": status,
            "transactionSignature": f"sig-{tx_id}",
            "amount": amount,
            "currency": "USDC",
            "customerDetails": {"email": "buyer@example.com"},
        }
        meta.update(metadata)
        body = {
            "event": event,
            "transactionObject": {"id": tx_id, "paylinkId": "pl-1", "meta": meta},
        }
        return json.dumps(body).encode("utf-8")

    return _build


@pytest.fixture
def webhook_headers():
    return {"Authorization": f"Bearer {WEBHOOK_SECRET}", "Content-Type": "application/json"}
