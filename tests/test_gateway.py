"""Tests for the acquiring provider client and its retry policy."""

from __future__ import annotations

import json
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from storefront.errors import ConfigurationError, GatewayError
from storefront.payments.gateway import PAYMENT_WEBHOOK_TYPE, AcquiringClient
from storefront.payments.retry import backoff_delay, retry_with_backoff


def _client(handler) -> AcquiringClient:
    return AcquiringClient(
        base_url="https://provider.example/uapi/",
        jwt_token="provider-jwt",
        client_id="client-1",
        customer_code="300000092",
        merchant_id="m-1",
        public_base_url="https://shop.example/",
        transport=httpx.MockTransport(handler),
    )


def _operation(**fields) -> dict:
    return {"Data": {"Operation": [fields]}}


class TestConfiguration:
    @pytest.mark.parametrize("missing", ["jwt_token", "client_id", "customer_code"])
    def test_missing_credentials_are_fatal(self, missing):
        kwargs = {"base_url": "https://p", "jwt_token": "t", "client_id": "c", "customer_code": "cc"}
        kwargs[missing] = ""
        with pytest.raises(ConfigurationError):
            AcquiringClient(**kwargs)

    def test_from_settings(self, settings):
        client = AcquiringClient.from_settings(settings)
        assert client.customer_code == "300000092"
        assert client.public_base_url == "https://shop.example"


class TestCreatePayment:
    @pytest.mark.asyncio
    async def test_posts_operation_and_returns_link(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["auth"] = request.headers["Authorization"]
            seen["body"] = json.loads(request.content)
            return httpx.Response(
                200, json=_operation(operationId="op-1", paymentLink="https://pay.example/op-1")
            )

        client = _client(handler)
        link = await client.create_payment("o1", Decimal("500.50"), "Order RBX1: Mug")
        await client.aclose()

        assert link.operation_id == "op-1"
        assert link.payment_url == "https://pay.example/op-1"
        assert seen["method"] == "POST"
        assert seen["url"] == "https://provider.example/uapi/acquiring/v1.0/payments"
        assert seen["auth"] == "Bearer provider-jwt"
        operation = seen["body"]["Data"]["Operation"][0]
        assert operation["amount"] == 500.5
        assert operation["customerCode"] == "300000092"
        assert operation["merchantId"] == "m-1"
        assert operation["purpose"] == "Order RBX1: Mug"
        assert operation["redirectUrl"] == "https://shop.example/checkout/success"
        assert operation["failRedirectUrl"] == "https://shop.example/checkout/fail"

    @pytest.mark.asyncio
    async def test_error_status_is_gateway_error(self):
        client = _client(lambda r: httpx.Response(400, json={"message": "Bad customerCode"}))
        with pytest.raises(GatewayError) as exc:
            await client.create_payment("o1", Decimal("1"), "x")
        assert exc.value.message == "Bad customerCode"
        assert exc.value.status_code == 400

    @pytest.mark.asyncio
    async def test_missing_link_is_gateway_error(self):
        client = _client(lambda r: httpx.Response(200, json=_operation(operationId="op-1")))
        with pytest.raises(GatewayError):
            await client.create_payment("o1", Decimal("1"), "x")

    @pytest.mark.asyncio
    async def test_creation_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(503)

        with pytest.raises(GatewayError):
            await _client(handler).create_payment("o1", Decimal("1"), "x")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connection_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(GatewayError, match="unreachable"):
            await _client(handler).create_payment("o1", Decimal("1"), "x")


class TestPaymentInfo:
    @pytest.mark.asyncio
    async def test_parses_operation(self):
        def handler(request):
            assert request.url.path == "/uapi/acquiring/v1.0/payments/op-1"
            return httpx.Response(
                200,
                json=_operation(
                    operationId="op-1",
                    status="APPROVED",
                    amount="500.00",
                    purpose="Order",
                    paymentType="card",
                ),
            )

        info = await _client(handler).get_payment_info("op-1")
        assert info.status == "APPROVED"
        assert info.amount == Decimal("500.00")
        assert info.payment_type == "card"

    @pytest.mark.asyncio
    async def test_transient_errors_are_retried(self):
        replies = iter(
            [
                httpx.Response(503),
                httpx.Response(429, headers={"Retry-After": "1"}),
                httpx.Response(200, json=_operation(operationId="op-1", status="CREATED")),
            ]
        )
        with patch("storefront.payments.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            info = await _client(lambda r: next(replies)).get_payment_info("op-1")
        assert info.status == "CREATED"
        assert sleep.await_count == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(502)

        with patch("storefront.payments.retry.asyncio.sleep", new=AsyncMock()):
            with pytest.raises(GatewayError) as exc:
                await _client(handler).get_payment_info("op-1")
        assert exc.value.status_code == 502
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self):
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(404, json={"message": "Operation not found"})

        with pytest.raises(GatewayError, match="Operation not found"):
            await _client(handler).get_payment_info("op-1")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_empty_operation_list(self):
        client = _client(lambda r: httpx.Response(200, json={"Data": {"Operation": []}}))
        with pytest.raises(GatewayError):
            await client.get_payment_info("op-1")


class TestRefundAndWebhook:
    @pytest.mark.asyncio
    async def test_refund_body(self):
        seen = {}

        def handler(request):
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"Data": {"isRefund": True}})

        await _client(handler).refund("op-1", Decimal("100"))
        assert seen["path"] == "/uapi/acquiring/v1.0/refunds"
        assert seen["body"]["Data"]["Operation"][0] == {
            "customerCode": "300000092",
            "operationId": "op-1",
            "amount": 100.0,
        }

    @pytest.mark.asyncio
    async def test_register_webhook(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"Data": True})

        await _client(handler).register_webhook(
            "https://shop.example/api/payment/webhook", [PAYMENT_WEBHOOK_TYPE]
        )
        assert seen["method"] == "PUT"
        assert seen["path"] == "/uapi/webhook/v1.0/client-1"
        assert seen["body"] == {
            "url": "https://shop.example/api/payment/webhook",
            "webhookType": ["acquiringInternetPayment"],
        }


class TestRetryPolicy:
    def test_retry_after_is_used(self):
        assert backoff_delay(0, 0.5, 5.0, retry_after=2.0) == 2.0

    def test_retry_after_is_capped(self):
        assert backoff_delay(0, 0.5, 5.0, retry_after=120.0) == 5.0

    @pytest.mark.parametrize(
        "attempt,low,high", [(0, 0.375, 0.625), (1, 0.75, 1.25), (10, 3.75, 5.0)]
    )
    def test_exponential_with_jitter(self, attempt, low, high):
        assert low <= backoff_delay(attempt, 0.5, 5.0) <= high

    @pytest.mark.asyncio
    async def test_retry_after_header_drives_the_wait(self):
        request = httpx.Request("GET", "https://provider.example/")
        replies = iter([httpx.Response(429, headers={"Retry-After": "3"}, request=request)])

        @retry_with_backoff(max_retries=1)
        async def read():
            response = next(replies, None)
            if response is None:
                return "ok"
            response.raise_for_status()

        with patch("storefront.payments.retry.asyncio.sleep", new=AsyncMock()) as sleep:
            assert await read() == "ok"
        sleep.assert_awaited_once_with(3.0)

    @pytest.mark.asyncio
    async def test_client_errors_are_final(self):
        calls = []
        request = httpx.Request("GET", "https://provider.example/")

        @retry_with_backoff(max_retries=3)
        async def read():
            calls.append(1)
            httpx.Response(400, request=request).raise_for_status()

        with pytest.raises(httpx.HTTPStatusError):
            await read()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_non_http_errors_propagate_immediately(self):
        calls = []

        @retry_with_backoff(max_retries=3)
        async def flaky():
            calls.append(1)
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            await flaky()
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_connect_errors_retried(self):
        calls = []

        @retry_with_backoff(max_retries=2)
        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise httpx.ConnectError("refused")
            return "ok"

        with patch("storefront.payments.retry.asyncio.sleep", new=AsyncMock()):
            assert await flaky() == "ok"
        assert len(calls) == 3
