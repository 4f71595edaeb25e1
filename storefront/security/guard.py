"""Authorization guard — one dependency for every protected route.

Usage:
    @router.get("/orders/history")
    async def order_history(user: SessionUser = Depends(require_user)): ...

Missing/invalid session -> AuthError (401). Wrong role -> ForbiddenError (403).
Roles are read from the credential store via SessionGate, never from the token.
"""

from __future__ import annotations

from typing import Awaitable, Callable

from fastapi import Request

from storefront.errors import AuthError, ForbiddenError
from storefront.security.session import ADMIN_ROLE, SessionUser


def session_token(request: Request) -> str | None:
    """Session cookie value for this request."""
    services = request.app.state.services
    return request.cookies.get(services.settings.session_cookie_name)


def authorize(role: str | None = None) -> Callable[[Request], Awaitable[SessionUser]]:
    """Build a guard dependency requiring a session and, optionally, a role."""

    async def guard(request: Request) -> SessionUser:
        cached = getattr(request.state, "user", None)
        if cached is None:
            cached = await request.app.state.services.gate.current_user(session_token(request))
            if cached is None:
                raise AuthError()
            request.state.user = cached
        if role is not None and cached.role != role:
            raise ForbiddenError()
        return cached

    guard.__name__ = f"require_{role or 'user'}"
    return guard


require_user = authorize()
require_admin = authorize(ADMIN_ROLE)
