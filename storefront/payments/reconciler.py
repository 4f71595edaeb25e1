"""OrderReconciler — the order/payment state machine.

Push path (webhook), pull path (status poll) and admin refunds all funnel
into apply_provider_status(), so a provider status means the same thing no
matter how it arrived.

Concurrency contract:
- No locks held across provider calls
- Each write is a compare-and-set keyed on the payment_status and
  operation_id that were read, so a superseded operation never moves an order
- A lost CAS or an illegal/redundant transition is SKIPPED, never an error
- No retries here: the provider redelivers webhooks, clients re-poll
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Awaitable, Callable, TypeVar

from storefront.errors import (
    ForbiddenError,
    GatewayError,
    OrderNotFoundError,
    ValidationError,
)
from storefront.payments.gateway import PaymentGateway
from storefront.payments.models import (
    Order,
    PaymentLink,
    PaymentStatus,
    PaymentStatusView,
)
from storefront.payments.state_machine import (
    can_transition,
    derive_order_status,
    target_for_provider_status,
)
from storefront.payments.store import OrderStore
from storefront.security.session import SessionUser

logger = logging.getLogger(__name__)

T = TypeVar("T")

_PURPOSE_MAX_LENGTH = 140
_PURPOSE_MAX_ITEMS = 3

# Payment statuses whose operation can still change at the provider
_POLLABLE = frozenset({PaymentStatus.PENDING, PaymentStatus.PAID})


class ReconcileOutcome(str, Enum):
    APPLIED = "applied"
    SKIPPED = "skipped"  # illegal, redundant, or lost the compare-and-set
    IGNORED = "ignored"  # provider status has no internal meaning


@dataclass(frozen=True)
class ReconcileResult:
    outcome: ReconcileOutcome
    order: Order
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.outcome is ReconcileOutcome.APPLIED


def payment_purpose(order: Order) -> str:
    """Payment description shown by the provider, e.g. 'Order RBX1A2B3C4D: Item A, Item B'."""
    names = [item.product_name or item.product_id for item in order.items][:_PURPOSE_MAX_ITEMS]
    return f"Order {order.number}: {', '.join(names)}"[:_PURPOSE_MAX_LENGTH]


class OrderReconciler:
    """Applies provider signals to orders with idempotent, race-safe transitions."""

    def __init__(
        self,
        store: OrderStore,
        gateway: PaymentGateway,
        *,
        payment_link_ttl: int = 3600,
        gateway_timeout: float = 15.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.store = store
        self.gateway = gateway
        self.payment_link_ttl = payment_link_ttl
        self.gateway_timeout = gateway_timeout
        self._clock = clock

    async def _call_gateway(self, call: Awaitable[T], timeout: float | None) -> T:
        limit = self.gateway_timeout if timeout is None else timeout
        try:
            return await asyncio.wait_for(call, timeout=limit)
        except asyncio.TimeoutError as e:
            raise GatewayError(f"Payment provider timed out after {limit:.1f}s") from e

    async def _load(self, order_id: str) -> Order:
        order = await self.store.get(order_id)
        if order is None:
            raise OrderNotFoundError(order_id)
        return order

    # ── Transition function ───────────────────────────────────────────────

    async def apply_provider_status(self, order: Order, provider_status: str | None) -> ReconcileResult:
        """Apply a provider status to ``order`` (as last read by the caller)."""
        target = target_for_provider_status(provider_status)
        if target is None:
            logger.info(
                "Ignoring provider status %r for order %s", provider_status, order.id
            )
            return ReconcileResult(ReconcileOutcome.IGNORED, order, "unsupported provider status")

        current = order.payment_status
        if not can_transition(current, target):
            logger.info(
                "Skipping transition %s -> %s for order %s (provider=%s)",
                current.value,
                target.value,
                order.id,
                provider_status,
            )
            return ReconcileResult(
                ReconcileOutcome.SKIPPED, order, f"{current.value} -> {target.value} not allowed"
            )

        written = await self.store.compare_and_set(
            order.id,
            expected={"payment_status": current, "operation_id": order.operation_id},
            changes={"payment_status": target},
        )
        if not written:
            latest = await self.store.get(order.id) or order
            logger.info(
                "Lost compare-and-set %s -> %s for order %s (now %s)",
                current.value,
                target.value,
                order.id,
                latest.payment_status.value,
            )
            return ReconcileResult(ReconcileOutcome.SKIPPED, latest, "concurrent update")

        order.payment_status = target
        order.status = derive_order_status(target)
        logger.info(
            "PAYMENT_AUDIT order=%s transition=%s->%s provider=%s",
            order.id,
            current.value,
            target.value,
            provider_status,
        )
        return ReconcileResult(ReconcileOutcome.APPLIED, order)

    # ── Push path ─────────────────────────────────────────────────────────

    async def reconcile_event(
        self, operation_id: str, provider_status: str | None, order_id: str | None = None
    ) -> ReconcileResult | None:
        """Apply a webhook notification. Returns None when no order matches."""
        order = await self.store.find_by_operation(operation_id)
        if order is None and order_id:
            order = await self.store.get(order_id)
        if order is None:
            logger.error(
                "Order not found for operation=%s order_id=%s", operation_id, order_id
            )
            return None
        if order.operation_id and order.operation_id != operation_id:
            logger.warning(
                "Order %s is bound to operation %s, not %s; ignoring",
                order.id,
                order.operation_id,
                operation_id,
            )
            return None
        return await self.apply_provider_status(order, provider_status)

    # ── Interactive operations ────────────────────────────────────────────

    async def initiate_payment(
        self, order_id: str, *, user_id: str | None = None, timeout: float | None = None
    ) -> PaymentLink:
        """Return a live payment link for the order, creating one if needed."""
        order = await self._load(order_id)
        if user_id is not None and order.user_id != user_id:
            raise ForbiddenError()

        now = self._clock()
        if order.payment_status is PaymentStatus.PENDING and order.has_live_link(now):
            logger.info("Reusing live payment link for order %s", order.id)
            return PaymentLink(operation_id=order.operation_id or "", payment_url=order.payment_url or "")
        if order.payment_status in (PaymentStatus.PAID, PaymentStatus.REFUNDED):
            raise ValidationError("Order is already paid")
        if order.payment_status is PaymentStatus.FAILED:
            raise ValidationError("Payment for this order failed; place a new order")

        link = await self._call_gateway(
            self.gateway.create_payment(order.id, order.total, payment_purpose(order)),
            timeout,
        )

        written = await self.store.compare_and_set(
            order.id,
            expected={
                "payment_status": order.payment_status,
                "operation_id": order.operation_id,
            },
            changes={
                "payment_status": PaymentStatus.PENDING,
                "operation_id": link.operation_id,
                "payment_url": link.payment_url,
                "payment_url_expires_at": self._clock() + self.payment_link_ttl,
            },
        )
        if written:
            logger.info(
                "PAYMENT_AUDIT order=%s transition=%s->PENDING operation=%s",
                order.id,
                order.payment_status.value,
                link.operation_id,
            )
            return link

        latest = await self._load(order.id)
        logger.warning(
            "Concurrent payment initiation for order %s; discarding operation %s",
            order.id,
            link.operation_id,
        )
        if latest.payment_status is PaymentStatus.PENDING and latest.has_live_link(self._clock()):
            return PaymentLink(operation_id=latest.operation_id or "", payment_url=latest.payment_url or "")
        raise GatewayError("Order changed while creating payment; retry")

    async def refresh_status(
        self,
        order_id: str,
        *,
        user: SessionUser | None = None,
        timeout: float | None = None,
    ) -> PaymentStatusView:
        """Status query; pulls the provider status first when an operation is open."""
        order = await self._load(order_id)
        if user is not None and not user.is_admin and order.user_id != user.id:
            raise ForbiddenError()

        if not order.operation_id or order.payment_status not in _POLLABLE:
            return PaymentStatusView.of(order)

        try:
            info = await self._call_gateway(
                self.gateway.get_payment_info(order.operation_id), timeout
            )
        except GatewayError as e:
            logger.warning(
                "Status pull failed for order %s (operation=%s): %s",
                order.id,
                order.operation_id,
                e.message,
            )
            return PaymentStatusView.of(order)

        result = await self.apply_provider_status(order, info.status)
        return PaymentStatusView.of(result.order, provider_status=info.status)

    async def refund(
        self, order_id: str, *, amount: Decimal | None = None, timeout: float | None = None
    ) -> ReconcileResult:
        """Refund a paid order at the provider, then record REFUNDED.

        Two concurrent refunds can both reach the provider; only one REFUNDED
        write lands. The provider refuses a second refund of the same
        operation, and a lost write is logged as a duplicate for follow-up.
        """
        order = await self._load(order_id)
        if order.payment_status is not PaymentStatus.PAID:
            raise ValidationError("Only paid orders can be refunded")
        if not order.operation_id:
            raise ValidationError("Order has no payment operation to refund")
        if amount is not None and (amount <= 0 or amount > order.total):
            raise ValidationError("Refund amount must be positive and not exceed the order total")

        await self._call_gateway(self.gateway.refund(order.operation_id, amount), timeout)
        result = await self.apply_provider_status(order, "REFUNDED")
        if not result.applied:
            logger.error(
                "PAYMENT_AUDIT duplicate refund order=%s operation=%s now=%s",
                order.id,
                order.operation_id,
                result.order.payment_status.value,
            )
        return result
