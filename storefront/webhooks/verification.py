"""Webhook assertion verification — strict-to-lenient chain.

The acquiring provider posts a raw RS256 JWT (not JSON) as the body.

Chain:
1. Verify against the provider's published JWKS -> verified event
2. JWKS unavailable or signature bad -> decode claims unverified (flag-gated)
3. Not a JWT at all -> parse as plain JSON (flag-gated)

Security contract:
- Steps 2 and 3 run only when webhook_allow_unverified is enabled, and are
  logged at WARNING on every delivery
- parse() never raises; anything unusable is dropped (returns None)
- Only the payment notification type is forwarded; missing operationId drops
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable

import httpx
from jose import JWTError, jwt

from storefront.errors import GatewayError
from storefront.payments.gateway import PAYMENT_WEBHOOK_TYPE

logger = logging.getLogger(__name__)

_ALGORITHMS = ["RS256"]
_LOG_BODY_PREVIEW = 200

SOURCE_JWKS = "jwks"
SOURCE_UNVERIFIED_JWT = "unverified_jwt"
SOURCE_PLAIN_JSON = "plain_json"


@dataclass(frozen=True)
class WebhookEvent:
    """Normalized payment notification, consumed once by OrderReconciler."""

    operation_id: str
    provider_status: str | None
    order_id: str | None = None
    webhook_type: str | None = None
    verified: bool = False
    source: str = SOURCE_JWKS
    raw: dict[str, Any] = field(default_factory=dict)


class JWKSProvider:
    """Fetches and caches the provider's JSON Web Key Set."""

    def __init__(
        self,
        url: str,
        client: httpx.AsyncClient,
        ttl: int = 3600,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.url = url
        self._client = client
        self._ttl = ttl
        self._clock = clock
        self._keys: dict[str, Any] | None = None
        self._fetched_at = 0.0

    async def get_keys(self) -> dict[str, Any]:
        """Return the cached key set, refreshing after ttl. Raises GatewayError."""
        if self._keys is not None and self._clock() - self._fetched_at < self._ttl:
            return self._keys
        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
            keys = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise GatewayError(f"JWKS unavailable: {type(e).__name__}") from e
        if not isinstance(keys, dict) or not isinstance(keys.get("keys"), list):
            raise GatewayError("JWKS response has no 'keys' list")
        self._keys = keys
        self._fetched_at = self._clock()
        return keys

    def invalidate(self) -> None:
        self._keys = None


class WebhookVerifier:
    """Turns a raw webhook body into a WebhookEvent, or None."""

    def __init__(
        self,
        jwks: JWKSProvider,
        *,
        allow_unverified: bool = False,
        accepted_type: str = PAYMENT_WEBHOOK_TYPE,
    ) -> None:
        self.jwks = jwks
        self.allow_unverified = allow_unverified
        self.accepted_type = accepted_type

    async def _verify_jwt(self, token: str) -> dict[str, Any] | None:
        try:
            keys = await self.jwks.get_keys()
        except GatewayError as e:
            logger.warning("Webhook JWKS verification unavailable: %s", e.message)
            return None
        try:
            claims = jwt.decode(
                token,
                keys,
                algorithms=_ALGORITHMS,
                options={"verify_aud": False},
            )
        except JWTError as e:
            logger.warning("Webhook JWT verification failed: %s", e)
            return None
        return claims if isinstance(claims, dict) else None

    def _decode_unverified(self, token: str) -> dict[str, Any] | None:
        try:
            claims = jwt.get_unverified_claims(token)
        except JWTError:
            return None
        return claims if isinstance(claims, dict) else None

    @staticmethod
    def _parse_json(body: str) -> dict[str, Any] | None:
        try:
            data = json.loads(body)
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def extract_claims(self, body: bytes | str) -> tuple[dict[str, Any], str] | None:
        """Run the verification chain. Returns (claims, source) or None."""
        if isinstance(body, bytes):
            try:
                text = body.decode("utf-8").strip()
            except UnicodeDecodeError:
                logger.error("Webhook body is not UTF-8")
                return None
        else:
            text = body.strip()
        if not text:
            logger.error("Webhook empty body received")
            return None

        claims = await self._verify_jwt(text)
        if claims is not None:
            return claims, SOURCE_JWKS

        unverified = self._decode_unverified(text)
        if unverified is not None:
            if not self.allow_unverified:
                logger.error("Webhook JWT rejected: signature not verified and unverified delivery is disabled")
                return None
            logger.warning(
                "Webhook accepted WITHOUT signature verification "
                "(STOREFRONT_WEBHOOK_ALLOW_UNVERIFIED is enabled)"
            )
            return unverified, SOURCE_UNVERIFIED_JWT

        if not self.allow_unverified:
            logger.error("Webhook body is not a signed assertion: %s", text[:_LOG_BODY_PREVIEW])
            return None
        data = self._parse_json(text)
        if data is None:
            logger.error("Webhook cannot parse body: %s", text[:_LOG_BODY_PREVIEW])
            return None
        logger.warning(
            "Webhook accepted as plain JSON WITHOUT signature verification "
            "(STOREFRONT_WEBHOOK_ALLOW_UNVERIFIED is enabled)"
        )
        return data, SOURCE_PLAIN_JSON

    def to_event(self, claims: dict[str, Any], source: str) -> WebhookEvent | None:
        """Filter and normalize claims. None means acknowledge and drop."""
        webhook_type = claims.get("webhookType")
        if webhook_type and webhook_type != self.accepted_type:
            logger.info("Webhook ignoring webhookType: %s", webhook_type)
            return None

        operation_id = claims.get("operationId")
        if not operation_id or not isinstance(operation_id, (str, int)):
            logger.error("Webhook missing operationId in payload")
            return None

        order_id = claims.get("orderId")
        status = claims.get("status")
        return WebhookEvent(
            operation_id=str(operation_id),
            provider_status=str(status) if status is not None else None,
            order_id=str(order_id) if order_id else None,
            webhook_type=webhook_type,
            verified=source == SOURCE_JWKS,
            source=source,
            raw=claims,
        )

    async def parse(self, body: bytes | str) -> WebhookEvent | None:
        extracted = await self.extract_claims(body)
        if extracted is None:
            return None
        claims, source = extracted
        return self.to_event(claims, source)
