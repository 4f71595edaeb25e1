"""Admin setup routes — one-time webhook registration with the provider."""

from __future__ import annotations

import asyncio
import logging

from fastapi import APIRouter, Depends
from pydantic import BaseModel, ConfigDict, Field

from storefront.errors import GatewayError
from storefront.payments.gateway import PAYMENT_WEBHOOK_TYPE
from storefront.security.guard import require_admin
from storefront.services import Services, get_services

logger = logging.getLogger(__name__)

WEBHOOK_URL_SETTING = "payment_webhook_url"

router = APIRouter(prefix="/api/setup", tags=["setup"], dependencies=[Depends(require_admin)])


class WebhookSetupRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    webhook_url: str | None = Field(default=None, alias="webhookUrl", max_length=2048)


@router.post("/webhook")
async def register_webhook(
    body: WebhookSetupRequest | None = None,
    services: Services = Depends(get_services),
):
    """Register the payment webhook URL with the provider and remember it."""
    settings = services.settings
    webhook_url = (body.webhook_url if body else None) or (
        f"{settings.public_base_url.rstrip('/')}/api/payment/webhook"
    )
    logger.info("Registering payment webhook: %s", webhook_url)

    try:
        await asyncio.wait_for(
            services.gateway.register_webhook(webhook_url, [PAYMENT_WEBHOOK_TYPE]),
            timeout=settings.gateway_timeout,
        )
    except asyncio.TimeoutError as e:
        raise GatewayError("Payment provider timed out") from e

    await services.store.set_setting(WEBHOOK_URL_SETTING, webhook_url)
    return {"webhookUrl": webhook_url, "message": "Webhook registered"}


@router.get("/webhook")
async def webhook_configuration(services: Services = Depends(get_services)):
    webhook_url = await services.store.get_setting(WEBHOOK_URL_SETTING)
    return {"configured": webhook_url is not None, "webhookUrl": webhook_url}
