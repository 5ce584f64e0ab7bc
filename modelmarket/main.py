import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from modelmarket.config import settings
from modelmarket.core.database import close_db, init_db
from modelmarket.core.errors import UNEXPECTED_ERROR, MarketError
from modelmarket.core.errors.middleware import market_error_handler, validation_error_handler
from modelmarket.core.errors.registry import error_registry
from modelmarket.core.log_middleware import CorrelationMiddleware
from modelmarket.core.structured_logging import APP_VERSION, setup_logging
from modelmarket.routers import access, health, subscriptions, usage, webhooks
from modelmarket.services.helio_client import helio_client
from modelmarket.services.rate_limiter import PRESETS, get_limiter
from modelmarket.services.subscription_service import subscription_service

# Initialize structured logging before any logger calls
setup_logging(log_dir=settings.log_dir)

logger = logging.getLogger(__name__)

API_TITLE = "ModelMarket API"

TAGS_METADATA = [
    {"name": "health", "description": "Liveness check. No authentication required."},
    {"name": "webhooks", "description": "Helio payment webhooks. Authenticated by shared bearer token."},
    {"name": "subscriptions", "description": "Checkout, subscription state and renewal. **Requires API Key.**"},
    {"name": "usage", "description": "Usage tracking and dashboard summary. **Requires API Key.**"},
    {"name": "access", "description": "Model access checks and plan limit gate. **Requires API Key.**"},
]


async def subscription_sweep_loop():
    """Expire lapsed subscriptions and purge stale rate-limit windows."""
    while True:
        await asyncio.sleep(settings.subscription_sweep_interval_s)
        try:
            subscription_service.expire_lapsed()
            for name in PRESETS:
                get_limiter(name).purge_expired()
        except Exception as exc:
            logger.error("Subscription sweep failed: %s", exc, exc_info=True)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.
    Handles startup and shutdown events.
    """
    logger.info("Starting %s v%s (%s)...", API_TITLE, APP_VERSION, settings.environment)

    error_registry.load()
    init_db()

    sweep_task = asyncio.create_task(subscription_sweep_loop())

    yield

    logger.info("Shutting down %s...", API_TITLE)

    sweep_task.cancel()
    try:
        await sweep_task
    except asyncio.CancelledError:
        logger.info("Subscription sweep cancelled")

    await helio_client.close()
    close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=API_TITLE,
        version=APP_VERSION,
        openapi_tags=TAGS_METADATA,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # request_id + correlation_id in every log line
    app.add_middleware(CorrelationMiddleware)

    app.add_exception_handler(MarketError, market_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)

    # Catch-all handler so unhandled exceptions return JSON (not bare text)
    @app.exception_handler(Exception)
    async def _unhandled_exception_handler(request: Request, exc: Exception):
        logger.error("Unhandled exception on %s %s: %s", request.method, request.url.path, exc, exc_info=True)
        return JSONResponse(
            status_code=500,
            content={"error": {"code": UNEXPECTED_ERROR, "title": "Internal error",
                               "message": "An unexpected error occurred."}},
        )

    app.include_router(health.router, prefix="/api", tags=["health"])
    app.include_router(webhooks.router, prefix="/api/webhooks", tags=["webhooks"])
    app.include_router(subscriptions.router, prefix="/api/subscriptions", tags=["subscriptions"])
    app.include_router(usage.router, prefix="/api/usage", tags=["usage"])
    app.include_router(access.router, prefix="/api/user/access", tags=["access"])

    return app


app = create_app()
