"""Signed session tokens — ``base64url(JSON payload).base64url(HMAC-SHA256)``.

Security contract:
- Signature is checked before the payload is decoded or parsed
- Signatures are compared as decoded bytes, in constant time
- verify() never raises: any malformed input is simply invalid
- A missing or short secret is fatal at construction (process startup)
- No revocation list: a token dies by expiry or by deleting the cookie

The same codec runs in the edge middleware (no credential store) and in the
server-side SessionGate. Both MAC backends below implement one contract and
are held to the same conformance tests.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import string
import time
from typing import Callable, Protocol, runtime_checkable

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives import hmac as crypto_hmac

from storefront.errors import ConfigurationError

logger = logging.getLogger(__name__)

MIN_SECRET_BYTES = 32
_SEPARATOR = "."
_B64URL_ALPHABET = frozenset(string.ascii_letters + string.digits + "-_")


# ── Encoding ──────────────────────────────────────────────────────────────


def b64url_encode(data: bytes) -> str:
    """Unpadded base64url."""
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def b64url_decode(segment: str) -> bytes:
    """Decode unpadded base64url, rejecting characters outside the alphabet."""
    if not set(segment) <= _B64URL_ALPHABET:
        raise ValueError("Not a base64url segment")
    raw = segment.encode("ascii")
    return base64.urlsafe_b64decode(raw + b"=" * (-len(raw) % 4))


# ── MAC backends ──────────────────────────────────────────────────────────


@runtime_checkable
class MacBackend(Protocol):
    """HMAC-SHA256 primitive used by TokenCodec."""

    name: str

    def sign(self, key: bytes, data: bytes) -> bytes: ...

    def verify(self, key: bytes, data: bytes, signature: bytes) -> bool: ...


class HashlibMac:
    """Standard library ``hmac`` backend."""

    name = "hashlib"

    def sign(self, key: bytes, data: bytes) -> bytes:
        return hmac.new(key, data, hashlib.sha256).digest()

    def verify(self, key: bytes, data: bytes, signature: bytes) -> bool:
        return hmac.compare_digest(self.sign(key, data), signature)


class CryptographyMac:
    """``cryptography`` backend; HMAC.verify is constant-time."""

    name = "cryptography"

    def sign(self, key: bytes, data: bytes) -> bytes:
        h = crypto_hmac.HMAC(key, hashes.SHA256())
        h.update(data)
        return h.finalize()

    def verify(self, key: bytes, data: bytes, signature: bytes) -> bool:
        h = crypto_hmac.HMAC(key, hashes.SHA256())
        h.update(data)
        try:
            h.verify(signature)
        except InvalidSignature:
            return False
        return True


MAC_BACKENDS: dict[str, MacBackend] = {
    "hashlib": HashlibMac(),
    "cryptography": CryptographyMac(),
}


# ── Codec ─────────────────────────────────────────────────────────────────


class TokenCodec:
    """Create and verify compact signed session tokens."""

    def __init__(
        self,
        secret: str | bytes | None,
        backend: MacBackend | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        key = secret.encode("utf-8") if isinstance(secret, str) else secret
        if not key or len(key) < MIN_SECRET_BYTES:
            raise ConfigurationError(
                f"Session secret is missing or shorter than {MIN_SECRET_BYTES} bytes"
            )
        self._key = key
        self._backend = backend or MAC_BACKENDS["hashlib"]
        self._clock = clock

    @property
    def backend_name(self) -> str:
        return self._backend.name

    def _now(self) -> int:
        # time.time resolved per call, not bound at definition
        return int(self._clock() if self._clock else time.time())

    def create(self, subject_id: str, ttl: int) -> str:
        """Issue a token for ``subject_id`` valid for ``ttl`` seconds."""
        if not subject_id:
            raise ValueError("subject_id must be a non-empty string")
        now = self._now()
        payload = {"sub": subject_id, "iat": now, "exp": now + int(ttl)}
        payload_b64 = b64url_encode(
            json.dumps(payload, separators=(",", ":")).encode("utf-8")
        )
        signature = self._backend.sign(self._key, payload_b64.encode("ascii"))
        return f"{payload_b64}{_SEPARATOR}{b64url_encode(signature)}"

    def verify(self, token: object) -> str | None:
        """Return the subject id of a valid token, or None."""
        if not isinstance(token, str) or token.count(_SEPARATOR) != 1:
            return None
        payload_b64, signature_b64 = token.split(_SEPARATOR)
        if not payload_b64 or not signature_b64:
            return None

        try:
            signed = payload_b64.encode("ascii")
            provided = b64url_decode(signature_b64)
        except (UnicodeEncodeError, binascii.Error, ValueError):
            return None
        # Non-canonical trailing bits would otherwise decode to the same bytes
        if b64url_encode(provided) != signature_b64:
            return None

        if not self._backend.verify(self._key, signed, provided):
            return None

        try:
            payload = json.loads(b64url_decode(payload_b64).decode("utf-8"))
        except (binascii.Error, ValueError, UnicodeDecodeError):
            return None

        if not isinstance(payload, dict):
            return None
        sub = payload.get("sub")
        exp = payload.get("exp")
        if not isinstance(sub, str) or not sub:
            return None
        if isinstance(exp, bool) or not isinstance(exp, int):
            return None
        if exp <= self._now():
            return None
        return sub
