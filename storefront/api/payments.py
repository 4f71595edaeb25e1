"""Payment API routes — initiation, status polling, refunds."""

from __future__ import annotations

import logging
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field

from storefront.errors import ValidationError
from storefront.payments.models import PaymentStatusView
from storefront.security.guard import require_admin, require_user
from storefront.security.session import SessionUser
from storefront.services import Services, get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payment", tags=["payments"])


class CreatePaymentRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)


class RefundRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    order_id: str = Field(alias="orderId", min_length=1)
    amount: Decimal | None = None  # partial refund, rubles


def _status_body(view: PaymentStatusView) -> dict:
    return {
        "orderId": view.order_id,
        "paymentStatus": view.payment_status.value,
        "status": view.status.value,
        "operationId": view.operation_id,
        "total": view.total,
        "providerStatus": view.provider_status,
    }


@router.post("/create")
async def create_payment(
    body: CreatePaymentRequest,
    user: SessionUser = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Create (or reuse) a payment link for the caller's order."""
    link = await services.reconciler.initiate_payment(body.order_id, user_id=user.id)
    return {"paymentUrl": link.payment_url, "operationId": link.operation_id}


@router.get("/status")
async def payment_status(
    order_id: str | None = Query(None, alias="orderId"),
    user: SessionUser = Depends(require_user),
    services: Services = Depends(get_services),
):
    """Current payment status; pulls from the provider while an operation is open."""
    if not order_id:
        raise ValidationError("orderId is required")
    view = await services.reconciler.refresh_status(order_id, user=user)
    return _status_body(view)


@router.post("/refund", dependencies=[Depends(require_admin)])
async def refund_payment(body: RefundRequest, services: Services = Depends(get_services)):
    """Refund a paid order (admin only)."""
    result = await services.reconciler.refund(body.order_id, amount=body.amount)
    logger.info("Refund for order %s: %s", body.order_id, result.outcome.value)
    return {
        "orderId": result.order.id,
        "paymentStatus": result.order.payment_status.value,
        "status": result.order.status.value,
        "outcome": result.outcome.value,
    }
