"""FastAPI application factory for the storefront payment subsystem.

Startup is where configuration errors surface: a missing or short session
secret, or missing acquiring credentials, raise ConfigurationError from
create_app() and the process never starts serving.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from storefront.api import auth_router, payments_router, setup_router
from storefront.config import Settings, get_settings
from storefront.errors import (
    AuthError,
    ForbiddenError,
    GatewayError,
    OrderNotFoundError,
    ValidationError,
)
from storefront.payments.gateway import AcquiringClient, PaymentGateway
from storefront.payments.reconciler import OrderReconciler
from storefront.payments.store import InMemoryOrderStore, OrderStore, RedisOrderStore
from storefront.security.middleware import install_security_middleware
from storefront.security.session import CredentialStore, InMemoryCredentialStore, SessionGate
from storefront.security.tokens import TokenCodec
from storefront.services import Services
from storefront.webhooks.handlers import router as webhook_router
from storefront.webhooks.verification import JWKSProvider, WebhookVerifier

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str) -> None:
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)


def build_services(
    settings: Settings,
    *,
    store: OrderStore | None = None,
    credentials: CredentialStore | None = None,
    gateway: PaymentGateway | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> Services:
    """Wire every component from settings. Raises ConfigurationError."""
    codec = TokenCodec(settings.session_secret)
    closeables: list = []

    if credentials is None:
        logger.warning("No credential store supplied; using an empty in-memory store")
        credentials = InMemoryCredentialStore()

    if store is None:
        if settings.redis_url:
            store = RedisOrderStore.from_url(settings.redis_url)
            closeables.append(store)
        else:
            logger.warning("STOREFRONT_REDIS_URL not set; orders are kept in process memory")
            store = InMemoryOrderStore()

    if gateway is None:
        gateway = AcquiringClient.from_settings(settings)
        closeables.append(gateway)

    if http_client is None:
        http_client = httpx.AsyncClient(timeout=settings.gateway_timeout)
        closeables.append(http_client)

    if settings.webhook_allow_unverified:
        logger.warning(
            "STOREFRONT_WEBHOOK_ALLOW_UNVERIFIED is enabled: payment webhooks whose "
            "signature cannot be verified WILL change order state. Disable in production."
        )

    reconciler = OrderReconciler(
        store,
        gateway,
        payment_link_ttl=settings.payment_link_ttl,
        gateway_timeout=settings.gateway_timeout,
    )
    verifier = WebhookVerifier(
        JWKSProvider(settings.webhook_jwks_url, http_client, ttl=settings.webhook_jwks_ttl),
        allow_unverified=settings.webhook_allow_unverified,
    )
    return Services(
        settings=settings,
        codec=codec,
        gate=SessionGate(codec, credentials, ttl=settings.session_ttl),
        store=store,
        gateway=gateway,
        reconciler=reconciler,
        webhook_verifier=verifier,
        closeables=closeables,
    )


def _error(message: str, status_code: int, **extra) -> JSONResponse:
    return JSONResponse({"error": message, **extra}, status_code=status_code)


def install_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ForbiddenError)
    async def _forbidden(request: Request, exc: ForbiddenError):
        return _error("Forbidden", 403)

    @app.exception_handler(AuthError)
    async def _unauthenticated(request: Request, exc: AuthError):
        return _error(exc.message, 401)

    @app.exception_handler(ValidationError)
    async def _invalid(request: Request, exc: ValidationError):
        return _error(exc.message, 400)

    @app.exception_handler(RequestValidationError)
    async def _invalid_body(request: Request, exc: RequestValidationError):
        return _error("Invalid request", 400, detail=jsonable_encoder(exc.errors()))

    @app.exception_handler(OrderNotFoundError)
    async def _not_found(request: Request, exc: OrderNotFoundError):
        return _error("Order not found", 404)

    @app.exception_handler(GatewayError)
    async def _gateway(request: Request, exc: GatewayError):
        logger.error("Gateway error on %s %s: %s", request.method, request.url.path, exc.message)
        return _error("Payment provider unavailable, please retry", 503, retryable=True)


def create_app(
    settings: Settings | None = None,
    *,
    store: OrderStore | None = None,
    credentials: CredentialStore | None = None,
    gateway: PaymentGateway | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    services = build_services(
        settings,
        store=store,
        credentials=credentials,
        gateway=gateway,
        http_client=http_client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await services.aclose()

    app = FastAPI(title="Storefront Payments", lifespan=lifespan)
    app.state.services = services

    app.include_router(auth_router)
    app.include_router(payments_router)
    app.include_router(webhook_router)
    app.include_router(setup_router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok"}

    install_exception_handlers(app)
    install_security_middleware(app, services.codec, settings.session_cookie_name)
    logger.info("Storefront payments app created (environment=%s)", settings.environment)
    return app


def main() -> None:
    """Run the API with uvicorn (``storefront-serve``)."""
    import uvicorn

    settings = get_settings()
    uvicorn.run(create_app(settings), host="0.0.0.0", port=8000, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
