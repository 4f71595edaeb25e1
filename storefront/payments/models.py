"""Order and payment data models."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class PaymentStatus(str, Enum):
    """Payment lifecycle. Moves forward only (see state_machine.TRANSITIONS)."""
    NONE = "NONE"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


class OrderStatus(str, Enum):
    """Customer-facing order status, always derived from PaymentStatus."""
    NEW = "NEW"
    PENDING = "PENDING"
    PAID = "PAID"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"


_DERIVED_STATUS: dict[PaymentStatus, OrderStatus] = {
    PaymentStatus.NONE: OrderStatus.NEW,
    PaymentStatus.PENDING: OrderStatus.PENDING,
    PaymentStatus.PAID: OrderStatus.PAID,
    PaymentStatus.FAILED: OrderStatus.FAILED,
    PaymentStatus.REFUNDED: OrderStatus.REFUNDED,
}


def derive_order_status(payment_status: PaymentStatus) -> OrderStatus:
    """Order status is a pure function of payment status."""
    return _DERIVED_STATUS[payment_status]


@dataclass(frozen=True)
class LineItem:
    product_id: str
    product_name: str = ""
    quantity: int = 1
    price: Decimal = Decimal("0")

    def to_dict(self) -> dict[str, Any]:
        return {
            "product_id": self.product_id,
            "product_name": self.product_name,
            "quantity": self.quantity,
            "price": str(self.price),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LineItem:
        return cls(
            product_id=str(data["product_id"]),
            product_name=str(data.get("product_name") or ""),
            quantity=int(data.get("quantity", 1)),
            price=Decimal(str(data.get("price", "0"))),
        )


@dataclass
class Order:
    """An order as seen by the payment subsystem.

    id, user_id, total and items are fixed at creation by the order flow.
    The payment fields are written only by OrderReconciler, through
    OrderStore.compare_and_set.
    """
    id: str
    user_id: str
    total: Decimal
    items: list[LineItem] = field(default_factory=list)
    status: OrderStatus = OrderStatus.NEW
    payment_status: PaymentStatus = PaymentStatus.NONE
    operation_id: str | None = None
    payment_url: str | None = None
    payment_url_expires_at: float | None = None
    created_at: float = field(default_factory=time.time)

    def __post_init__(self) -> None:
        if self.total <= 0:
            raise ValueError("Order total must be positive")
        self.status = derive_order_status(self.payment_status)

    def has_live_link(self, now: float | None = None) -> bool:
        if not self.payment_url or self.payment_url_expires_at is None:
            return False
        return (time.time() if now is None else now) < self.payment_url_expires_at

    @property
    def number(self) -> str:
        """Short human-facing order number."""
        return "RBX" + self.id[-8:].upper()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "total": str(self.total),
            "items": [item.to_dict() for item in self.items],
            "status": self.status.value,
            "payment_status": self.payment_status.value,
            "operation_id": self.operation_id,
            "payment_url": self.payment_url,
            "payment_url_expires_at": self.payment_url_expires_at,
            "created_at": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Order:
        """Load a stored record, normalizing legacy status strings."""
        from storefront.payments.state_machine import normalize_payment_status

        return cls(
            id=str(data["id"]),
            user_id=str(data.get("user_id") or ""),
            total=Decimal(str(data["total"])),
            items=[LineItem.from_dict(i) for i in data.get("items") or []],
            payment_status=normalize_payment_status(data.get("payment_status")),
            operation_id=data.get("operation_id"),
            payment_url=data.get("payment_url"),
            payment_url_expires_at=data.get("payment_url_expires_at"),
            created_at=float(data.get("created_at") or 0.0),
        )


@dataclass(frozen=True)
class PaymentLink:
    """Result of a payment initiation."""
    operation_id: str
    payment_url: str


@dataclass(frozen=True)
class PaymentInfo:
    """Provider view of an operation."""
    operation_id: str
    status: str
    amount: Decimal = Decimal("0")
    purpose: str = ""
    payment_type: str | None = None


@dataclass(frozen=True)
class PaymentStatusView:
    """Response of the status query."""
    order_id: str
    payment_status: PaymentStatus
    status: OrderStatus
    operation_id: str | None
    total: Decimal
    provider_status: str | None = None

    @classmethod
    def of(cls, order: Order, provider_status: str | None = None) -> PaymentStatusView:
        return cls(
            order_id=order.id,
            payment_status=order.payment_status,
            status=order.status,
            operation_id=order.operation_id,
            total=order.total,
            provider_status=provider_status,
        )
