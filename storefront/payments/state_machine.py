"""Payment transition graph and provider vocabulary.

The only place that decides what a status string means:

- TRANSITIONS: legal forward moves of PaymentStatus
- PROVIDER_STATUS_MAP: acquiring provider status -> target PaymentStatus
- _LEGACY_ALIASES: stored legacy strings -> PaymentStatus

Anything not listed is a no-op (transitions) or ignored (provider statuses).
"""

from __future__ import annotations

from storefront.payments.models import PaymentStatus, derive_order_status

__all__ = [
    "PROVIDER_STATUS_MAP",
    "TRANSITIONS",
    "can_transition",
    "derive_order_status",
    "is_terminal",
    "normalize_payment_status",
    "target_for_provider_status",
]

TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.NONE: frozenset({PaymentStatus.PENDING}),
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset({PaymentStatus.REFUNDED}),
    PaymentStatus.FAILED: frozenset(),
    PaymentStatus.REFUNDED: frozenset(),
}

PROVIDER_STATUS_MAP: dict[str, PaymentStatus] = {
    "APPROVED": PaymentStatus.PAID,
    "AUTHORIZED": PaymentStatus.PAID,
    "DECLINED": PaymentStatus.FAILED,
    "REFUNDED": PaymentStatus.REFUNDED,
}

_LEGACY_ALIASES: dict[str, PaymentStatus] = {
    "": PaymentStatus.NONE,
    "none": PaymentStatus.NONE,
    "new": PaymentStatus.NONE,
    "pending": PaymentStatus.PENDING,
    "processing": PaymentStatus.PENDING,
    "awaiting": PaymentStatus.PENDING,
    "paid": PaymentStatus.PAID,
    "approved": PaymentStatus.PAID,
    "authorized": PaymentStatus.PAID,
    "success": PaymentStatus.PAID,
    "succeeded": PaymentStatus.PAID,
    "completed": PaymentStatus.PAID,
    "failed": PaymentStatus.FAILED,
    "declined": PaymentStatus.FAILED,
    "cancelled": PaymentStatus.FAILED,
    "canceled": PaymentStatus.FAILED,
    "error": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
    "refund": PaymentStatus.REFUNDED,
}


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    """True only for a legal forward move; self-transitions are not legal."""
    return target in TRANSITIONS[current]


def is_terminal(status: PaymentStatus) -> bool:
    return not TRANSITIONS[status]


def target_for_provider_status(provider_status: str | None) -> PaymentStatus | None:
    """Map a provider status to its target, or None when unsupported."""
    if not isinstance(provider_status, str):
        return None
    return PROVIDER_STATUS_MAP.get(provider_status.strip().upper())


def normalize_payment_status(raw: object) -> PaymentStatus:
    """Canonical PaymentStatus for a stored value (enum, canonical or legacy string)."""
    if isinstance(raw, PaymentStatus):
        return raw
    if raw is None:
        return PaymentStatus.NONE
    if not isinstance(raw, str):
        raise ValueError(f"Unrecognized payment status: {raw!r}")
    key = raw.strip().lower()
    try:
        return _LEGACY_ALIASES[key]
    except KeyError:
        raise ValueError(f"Unrecognized payment status: {raw!r}") from None
