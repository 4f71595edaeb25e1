"""Exception taxonomy shared by the storefront payment subsystem.

HTTP mapping lives in ``storefront.serve``:

- AuthError -> 401, ForbiddenError -> 403 (generic body, no detail)
- ValidationError -> 400 (message describes the caller's own input)
- OrderNotFoundError -> 404
- GatewayError -> 503, retryable
- ConfigurationError -> never handled; aborts startup

Reconciliation skips are not errors (see ``ReconcileOutcome``).
"""

from __future__ import annotations

__all__ = [
    "AuthError",
    "ConfigurationError",
    "ForbiddenError",
    "GatewayError",
    "OrderNotFoundError",
    "StorefrontError",
    "ValidationError",
]


class StorefrontError(Exception):
    """Base exception for the payment subsystem."""

    __slots__ = ("message",)

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(StorefrontError):
    """Raised at startup when required configuration is missing or unsafe."""

    __slots__ = ()


class AuthError(StorefrontError):
    """Caller is not authenticated (absent, malformed, expired or tampered token)."""

    __slots__ = ()

    def __init__(self, message: str = "Authentication required") -> None:
        super().__init__(message)


class ForbiddenError(AuthError):
    """Caller is authenticated but lacks the required role or ownership."""

    __slots__ = ()

    def __init__(self, message: str = "Forbidden") -> None:
        super().__init__(message)


class ValidationError(StorefrontError):
    """Caller supplied a malformed request or one that is invalid for the order state."""

    __slots__ = ()


class OrderNotFoundError(StorefrontError):
    """No order exists with the requested identifier."""

    __slots__ = ("order_id",)

    def __init__(self, order_id: str) -> None:
        super().__init__("Order not found")
        self.order_id = order_id


class GatewayError(StorefrontError):
    """The payment provider is unreachable, timed out, or returned an error."""

    __slots__ = ("status_code",)

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
