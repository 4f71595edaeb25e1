"""SessionGate — who is the caller, and are they an admin.

Security contract:
- Every failure (no cookie, bad token, unknown user, store error) -> None
- Callers never learn which step failed; the reason is logged at DEBUG
- Role comes only from the credential store record, never from the token
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from starlette.responses import Response

from storefront.security.tokens import TokenCodec

logger = logging.getLogger(__name__)

ADMIN_ROLE = "admin"
CUSTOMER_ROLE = "customer"


@dataclass(frozen=True)
class SessionUser:
    """Authenticated caller, as recorded in the credential store."""

    id: str
    email: str
    role: str = CUSTOMER_ROLE
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def to_dict(self) -> dict[str, str | None]:
        return {"id": self.id, "email": self.email, "name": self.name, "role": self.role}


@runtime_checkable
class CredentialStore(Protocol):
    """User lookup consumed by SessionGate. Implemented outside this subsystem."""

    async def get_user(self, user_id: str) -> SessionUser | None: ...

    async def authenticate(self, email: str, password: str) -> SessionUser | None: ...


@dataclass
class _UserRecord:
    user: SessionUser
    password: str


@dataclass
class InMemoryCredentialStore:
    """Dict-backed credential store for development and tests."""

    _by_id: dict[str, _UserRecord] = field(default_factory=dict)

    def add_user(
        self,
        user_id: str,
        email: str,
        password: str,
        role: str = CUSTOMER_ROLE,
        name: str | None = None,
    ) -> SessionUser:
        user = SessionUser(id=user_id, email=email, role=role, name=name)
        self._by_id[user_id] = _UserRecord(user=user, password=password)
        return user

    async def get_user(self, user_id: str) -> SessionUser | None:
        record = self._by_id.get(user_id)
        return record.user if record else None

    async def authenticate(self, email: str, password: str) -> SessionUser | None:
        for record in self._by_id.values():
            email_ok = hmac.compare_digest(record.user.email.encode(), email.encode())
            password_ok = hmac.compare_digest(record.password.encode(), password.encode())
            if email_ok and password_ok:
                return record.user
        return None


class SessionGate:
    """Resolve the calling user from a session token."""

    def __init__(self, codec: TokenCodec, credentials: CredentialStore, ttl: int) -> None:
        self.codec = codec
        self.credentials = credentials
        self.ttl = ttl

    async def current_user(self, token: str | None) -> SessionUser | None:
        if not token:
            logger.debug("No session token")
            return None

        user_id = self.codec.verify(token)
        if user_id is None:
            logger.debug("Session token rejected")
            return None

        try:
            user = await self.credentials.get_user(user_id)
        except Exception:
            logger.warning("Credential store lookup failed", exc_info=True)
            return None

        if user is None:
            logger.debug("Session subject %s not found", user_id)
        return user

    async def current_admin(self, token: str | None) -> SessionUser | None:
        user = await self.current_user(token)
        if user is None or user.role != ADMIN_ROLE:
            return None
        return user

    async def login(self, email: str, password: str) -> tuple[SessionUser, str] | None:
        """Check credentials and issue a token. Returns None on any mismatch."""
        try:
            user = await self.credentials.authenticate(email, password)
        except Exception:
            logger.warning("Credential store authenticate failed", exc_info=True)
            return None
        if user is None:
            return None
        token = self.codec.create(user.id, self.ttl)
        logger.info("Session issued for user %s", user.id)
        return user, token


# ── Cookie helpers ────────────────────────────────────────────────────────


def set_session_cookie(
    response: Response, token: str, *, name: str, max_age: int, secure: bool
) -> None:
    """Attach the session cookie (httpOnly, SameSite=Lax)."""
    response.set_cookie(
        key=name,
        value=token,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=secure,
    )


def clear_session_cookie(response: Response, *, name: str) -> None:
    response.delete_cookie(key=name, path="/")
