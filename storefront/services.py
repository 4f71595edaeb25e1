"""Per-application service container.

Held on ``app.state.services`` and reached through the request, so storage
and provider clients are always explicit dependencies, never module globals.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from fastapi import Request

from storefront.config import Settings
from storefront.payments.gateway import PaymentGateway
from storefront.payments.reconciler import OrderReconciler
from storefront.payments.store import OrderStore
from storefront.security.session import SessionGate
from storefront.security.tokens import TokenCodec
from storefront.webhooks.verification import WebhookVerifier


@dataclass
class Services:
    settings: Settings
    codec: TokenCodec
    gate: SessionGate
    store: OrderStore
    gateway: PaymentGateway
    reconciler: OrderReconciler
    webhook_verifier: WebhookVerifier
    closeables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for resource in self.closeables:
            closer = getattr(resource, "aclose", None) or getattr(resource, "close", None)
            if closer is not None:
                await closer()


def get_services(request: Request) -> Services:
    return request.app.state.services
