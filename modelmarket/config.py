"""
ModelMarket Application Configuration
=====================================

PURPOSE:
    Pydantic-Settings based configuration for the marketplace billing backend.
    All settings can be overridden via environment variables (MODELMARKET_ prefix).
    DATABASE_URL is read unprefixed by modelmarket.core.database.

HELIO:
    MODELMARKET_HELIO_WEBHOOK_SECRET : shared bearer token Helio sends on webhooks
    MODELMARKET_HELIO_API_KEY        : public API key (webhook registration)
    MODELMARKET_HELIO_API_SECRET     : secret used as bearer for API calls
    MODELMARKET_HELIO_ENVIRONMENT    : production | development
"""

import logging
from typing import List, Literal, Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

HELIO_PRODUCTION_API = "https://api.hel.io/v1"
HELIO_DEVELOPMENT_API = "https://api.dev.hel.io/v1"


class Settings(BaseSettings):
    app_name: str = "ModelMarket"
    debug: bool = False
    environment: Literal["development", "production"] = "production"

    data_directory: str = "/data"
    log_dir: str = "logs"

    # Identity lookup (X-API-Key)
    auth_enabled: bool = True
    auth_cache_ttl: int = 300  # seconds
    apikey_hmac_secret: Optional[str] = None

    # Helio crypto payments
    helio_webhook_secret: Optional[str] = None
    helio_api_key: Optional[str] = None
    helio_api_secret: Optional[str] = None
    helio_environment: Literal["production", "development"] = "development"
    helio_timeout_s: float = 5.0
    helio_currency: str = "USDC"

    # Public URL of this backend (paylink success URLs, webhook targets)
    public_url: str = "http://localhost:8000"

    # Revenue share: creator keeps this fraction, platform keeps the rest
    creator_revenue_share: float = 0.8

    # Usage pricing
    usage_token_rate: float = 0.001   # per 1000 tokens
    usage_time_rate: float = 0.0001   # per second of response time
    download_fee: float = 0.01
    near_limit_threshold: float = 0.8

    # Subscription lifecycle
    renewal_window_hours: int = 24
    renewal_grace_days: int = 7
    subscription_sweep_interval_s: int = 300

    cors_origins: List[str] = ["http://localhost:3000"]

    class Config:
        env_file = ".env"
        env_prefix = "MODELMARKET_"

    @property
    def helio_base_url(self) -> str:
        if self.helio_environment == "production":
            return HELIO_PRODUCTION_API
        return HELIO_DEVELOPMENT_API


settings = Settings()

if not settings.helio_webhook_secret:
    logger.warning(
        "MODELMARKET_HELIO_WEBHOOK_SECRET not set: Helio webhooks will be rejected with 500."
    )
