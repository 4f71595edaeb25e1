"""Test doubles and constants shared across the suite."""

from __future__ import annotations

import asyncio
from decimal import Decimal

from storefront.errors import GatewayError
from storefront.payments.models import LineItem, Order, PaymentInfo, PaymentLink

SECRET = "test-secret-that-is-at-least-32-bytes-long!!"
KEY_ID = "test-key"

CUSTOMER_ID = "user-alice"
OTHER_CUSTOMER_ID = "user-bob"
ADMIN_ID = "user-admin"
PASSWORD = "correct horse battery staple"


class FakeGateway:
    """In-memory PaymentGateway that records every call."""

    def __init__(self) -> None:
        self.created: list[tuple[str, Decimal, str]] = []
        self.refunds: list[tuple[str, Decimal | None]] = []
        self.registered: list[tuple[str, list[str]]] = []
        self.statuses: dict[str, str] = {}
        self.fail_with: Exception | None = None
        self.delay = 0.0
        self._counter = 0

    async def _maybe_fail(self) -> None:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_with is not None:
            raise self.fail_with

    async def create_payment(self, order_id: str, amount: Decimal, purpose: str) -> PaymentLink:
        await self._maybe_fail()
        self._counter += 1
        operation_id = f"op-{self._counter}"
        self.created.append((order_id, amount, purpose))
        self.statuses.setdefault(operation_id, "CREATED")
        return PaymentLink(operation_id=operation_id, payment_url=f"https://pay.example/{operation_id}")

    async def get_payment_info(self, operation_id: str) -> PaymentInfo:
        await self._maybe_fail()
        if operation_id not in self.statuses:
            raise GatewayError(f"Operation {operation_id} not found at provider", status_code=404)
        return PaymentInfo(operation_id=operation_id, status=self.statuses[operation_id])

    async def refund(self, operation_id: str, amount: Decimal | None = None) -> None:
        await self._maybe_fail()
        self.refunds.append((operation_id, amount))
        self.statuses[operation_id] = "REFUNDED"

    async def register_webhook(self, url: str, webhook_types: list[str]) -> None:
        await self._maybe_fail()
        self.registered.append((url, list(webhook_types)))


def make_order(
    order_id: str = "ord-0001-abcdef12",
    user_id: str = CUSTOMER_ID,
    total: str = "500",
    **kwargs,
) -> Order:
    items = kwargs.pop(
        "items",
        [
            LineItem("p1", "Blue Mug", 1, Decimal("300")),
            LineItem("p2", "Tea Towel", 2, Decimal("100")),
        ],
    )
    return Order(id=order_id, user_id=user_id, total=Decimal(total), items=items, **kwargs)

