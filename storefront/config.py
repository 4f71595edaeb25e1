"""Storefront payments configuration."""

from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Environment-driven settings (prefix ``STOREFRONT_``)."""

    environment: str = "development"
    log_level: str = "INFO"

    # Session tokens. The secret is validated by TokenCodec at app startup.
    session_secret: str = ""
    session_ttl: int = 60 * 60 * 24 * 30  # 30 days
    session_cookie_name: str = "session_token"
    cookie_secure: bool = False

    # Order storage: Redis when set, in-memory otherwise
    redis_url: str | None = None

    # Acquiring provider
    acquiring_base_url: str = "https://enter.tochka.com/uapi"
    acquiring_jwt_token: str = ""
    acquiring_client_id: str = ""
    acquiring_customer_code: str = ""
    acquiring_merchant_id: str = ""
    public_base_url: str = "http://localhost:8000"
    payment_link_ttl: int = 3600
    gateway_timeout: float = 15.0

    # Webhook verification
    webhook_jwks_url: str = (
        "https://enter.tochka.com/uapi/open-banking/v1.0/.well-known/jwks.json"
    )
    webhook_jwks_ttl: int = 3600
    # Accept webhook bodies whose signature could not be checked. Off in hardened deployments.
    webhook_allow_unverified: bool = False

    login_rate_limit: str = "10/minute"

    model_config = {"env_prefix": "STOREFRONT_", "env_file": ".env", "extra": "ignore"}

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


@lru_cache
def get_settings() -> Settings:
    """Return the process-wide settings, loaded once from the environment."""
    return Settings()
