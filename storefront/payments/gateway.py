"""Acquiring provider client — payment links, status, refunds, webhook setup.

Every provider failure surfaces as GatewayError. Status queries are retried
on transient errors; creation and refunds are sent exactly once.
Amounts are in rubles (not kopecks).
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Protocol, runtime_checkable

import httpx

from storefront.config import Settings
from storefront.errors import ConfigurationError, GatewayError
from storefront.payments.models import PaymentInfo, PaymentLink
from storefront.payments.retry import retry_with_backoff

logger = logging.getLogger(__name__)

PAYMENT_WEBHOOK_TYPE = "acquiringInternetPayment"
DEFAULT_PAYMENT_MODES = ("card", "sbp")


@runtime_checkable
class PaymentGateway(Protocol):
    """Outbound payment provider operations used by OrderReconciler."""

    async def create_payment(self, order_id: str, amount: Decimal, purpose: str) -> PaymentLink: ...

    async def get_payment_info(self, operation_id: str) -> PaymentInfo: ...

    async def refund(self, operation_id: str, amount: Decimal | None = None) -> None: ...

    async def register_webhook(self, url: str, webhook_types: list[str]) -> None: ...


def _first_operation(data: Any) -> dict[str, Any]:
    """Return Data.Operation[0] of a provider response, or {}."""
    if not isinstance(data, dict):
        return {}
    operations = (data.get("Data") or {}).get("Operation") or []
    if isinstance(operations, list) and operations and isinstance(operations[0], dict):
        return operations[0]
    return {}


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return f"HTTP {response.status_code}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"HTTP {response.status_code}"


class AcquiringClient:
    """httpx client for the acquiring REST API (Bearer JWT auth)."""

    def __init__(
        self,
        *,
        base_url: str,
        jwt_token: str,
        client_id: str,
        customer_code: str,
        merchant_id: str = "",
        public_base_url: str = "",
        timeout: float = 15.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not jwt_token or not client_id or not customer_code:
            raise ConfigurationError(
                "Missing acquiring configuration (jwt token, client id, customer code)"
            )
        self.customer_code = customer_code
        self.merchant_id = merchant_id
        self.client_id = client_id
        self.public_base_url = public_base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {jwt_token}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls, settings: Settings, transport: httpx.AsyncBaseTransport | None = None
    ) -> AcquiringClient:
        return cls(
            base_url=settings.acquiring_base_url,
            jwt_token=settings.acquiring_jwt_token,
            client_id=settings.acquiring_client_id,
            customer_code=settings.acquiring_customer_code,
            merchant_id=settings.acquiring_merchant_id,
            public_base_url=settings.public_base_url,
            timeout=settings.gateway_timeout,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _send(self, method: str, path: str, body: dict[str, Any] | None = None) -> Any:
        try:
            response = await self._client.request(method, path, json=body)
        except httpx.HTTPError as e:
            logger.error("Acquiring %s %s failed: %s", method, path, type(e).__name__)
            raise GatewayError(f"Payment provider unreachable: {type(e).__name__}") from e
        if response.is_error:
            message = _error_message(response)
            logger.error("Acquiring %s %s -> %d: %s", method, path, response.status_code, message)
            raise GatewayError(message, status_code=response.status_code)
        try:
            return response.json()
        except ValueError as e:
            raise GatewayError("Payment provider returned invalid JSON") from e

    async def create_payment(self, order_id: str, amount: Decimal, purpose: str) -> PaymentLink:
        operation: dict[str, Any] = {
            "customerCode": self.customer_code,
            "amount": float(amount),
            "purpose": purpose,
            "paymentMode": list(DEFAULT_PAYMENT_MODES),
            "redirectUrl": f"{self.public_base_url}/checkout/success",
            "failRedirectUrl": f"{self.public_base_url}/checkout/fail",
        }
        if self.merchant_id:
            operation["merchantId"] = self.merchant_id

        data = await self._send(
            "POST", "/acquiring/v1.0/payments", {"Data": {"Operation": [operation]}}
        )
        op = _first_operation(data)
        payment_url = op.get("paymentLink") or op.get("payment_link")
        operation_id = op.get("operationId") or op.get("operation_id")
        if not payment_url or not operation_id:
            raise GatewayError("Payment provider response is missing paymentLink/operationId")

        logger.info("Payment link created for order %s (operation=%s)", order_id, operation_id)
        return PaymentLink(operation_id=str(operation_id), payment_url=str(payment_url))

    @retry_with_backoff()
    async def _fetch_payment(self, operation_id: str) -> httpx.Response:
        response = await self._client.get(f"/acquiring/v1.0/payments/{operation_id}")
        response.raise_for_status()
        return response

    async def get_payment_info(self, operation_id: str) -> PaymentInfo:
        try:
            response = await self._fetch_payment(operation_id)
        except httpx.HTTPStatusError as e:
            raise GatewayError(
                _error_message(e.response), status_code=e.response.status_code
            ) from e
        except httpx.HTTPError as e:
            raise GatewayError(f"Payment provider unreachable: {type(e).__name__}") from e

        try:
            op = _first_operation(response.json())
        except ValueError as e:
            raise GatewayError("Payment provider returned invalid JSON") from e
        if not op:
            raise GatewayError(f"Operation {operation_id} not found at provider")

        return PaymentInfo(
            operation_id=str(op.get("operationId") or operation_id),
            status=str(op.get("status") or "UNKNOWN"),
            amount=Decimal(str(op.get("amount") or 0)),
            purpose=str(op.get("purpose") or ""),
            payment_type=op.get("paymentType"),
        )

    async def refund(self, operation_id: str, amount: Decimal | None = None) -> None:
        operation: dict[str, Any] = {
            "customerCode": self.customer_code,
            "operationId": operation_id,
        }
        if amount is not None:
            operation["amount"] = float(amount)
        await self._send("POST", "/acquiring/v1.0/refunds", {"Data": {"Operation": [operation]}})
        logger.info("Refund requested for operation %s", operation_id)

    async def register_webhook(self, url: str, webhook_types: list[str]) -> None:
        await self._send(
            "PUT", f"/webhook/v1.0/{self.client_id}", {"url": url, "webhookType": webhook_types}
        )
        logger.info("Webhook registered: %s (%s)", url, ",".join(webhook_types))
