"""Webhook HTTP handlers — acquiring payment notifications.

The handler:
1. Reads the raw body (a signed assertion, not JSON)
2. Runs the verification chain (WebhookVerifier)
3. Hands the normalized event to OrderReconciler.reconcile_event

Security contract:
- Always 200 "OK" (plain text), whatever happened: the provider retries
  non-2xx deliveries dozens of times and a retry never fixes our side
- Never return error details to the webhook caller
- Log every delivery for audit (WEBHOOK_AUDIT)
"""

from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse, PlainTextResponse

from storefront.payments.reconciler import OrderReconciler
from storefront.webhooks.verification import WebhookVerifier

logger = logging.getLogger(__name__)

ACK_BODY = "OK"

router = APIRouter(prefix="/api/payment", tags=["webhooks"])

# Webhook receive counter for monitoring (simple in-memory for now)
_webhook_counts: dict[str, int] = {}


def _log_webhook(source: str, operation_id: str, status: str, outcome: str) -> None:
    """Audit log for webhook activity."""
    _webhook_counts[outcome] = _webhook_counts.get(outcome, 0) + 1
    logger.info(
        "WEBHOOK_AUDIT source=%s operation=%s status=%s outcome=%s count=%d",
        source,
        operation_id,
        status,
        outcome,
        _webhook_counts[outcome],
    )


async def handle_payment_webhook(
    body: bytes, verifier: WebhookVerifier, reconciler: OrderReconciler
) -> str:
    """Process one delivery. Returns the audit outcome; never raises."""
    try:
        event = await verifier.parse(body)
        if event is None:
            _log_webhook("unknown", "unknown", "unknown", "dropped")
            return "dropped"

        result = await reconciler.reconcile_event(
            event.operation_id, event.provider_status, order_id=event.order_id
        )
        outcome = "order_not_found" if result is None else result.outcome.value
        _log_webhook(event.source, event.operation_id, str(event.provider_status), outcome)
        return outcome
    except Exception:
        logger.exception("Unhandled error while processing payment webhook")
        _log_webhook("unknown", "unknown", "unknown", "error")
        return "error"


@router.post("/webhook")
async def payment_webhook(request: Request):
    """Receive acquiring payment notifications. Always 200."""
    start = time.time()
    body = await request.body()
    services = request.app.state.services
    outcome = await handle_payment_webhook(body, services.webhook_verifier, services.reconciler)
    logger.debug("Webhook processed in %.1fms: %s", (time.time() - start) * 1000, outcome)
    return PlainTextResponse(ACK_BODY, status_code=200)


@router.get("/webhook")
async def payment_webhook_probe():
    """Liveness probe used by the provider when registering the endpoint."""
    return JSONResponse({"status": "ok"})
