"""Security middleware for FastAPI: edge session gate and rate limiting.

Middleware ordering (outermost first):
1. Edge session gate -- token-only check for /admin pages, security headers
2. Rate limiting -- per-route limits via slowapi decorators

The edge gate has no credential store: it can only say "this token is
authentic and unexpired". Role checks stay in the API guard.
"""

from __future__ import annotations

import logging
from urllib.parse import urlencode

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.config import get_settings
from storefront.security.tokens import TokenCodec

logger = logging.getLogger(__name__)

PROTECTED_PAGE_PREFIX = "/admin"
LOGIN_PAGE = "/login"

# Paths the edge gate never touches (API has its own guard; static assets)
_PASSTHROUGH_PREFIXES = ("/api", "/_next/static", "/_next/image")
_PASSTHROUGH_PATHS = {"/favicon.ico", "/robots.txt", "/sitemap.xml"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}

# Rate limiter
limiter = Limiter(key_func=get_remote_address)


def login_rate_limit() -> str:
    return get_settings().login_rate_limit


def _is_protected_page(path: str) -> bool:
    return path == PROTECTED_PAGE_PREFIX or path.startswith(PROTECTED_PAGE_PREFIX + "/")


class EdgeSessionMiddleware(BaseHTTPMiddleware):
    """Token-only gate for admin pages; adds security headers to page responses."""

    def __init__(self, app, codec: TokenCodec, cookie_name: str) -> None:
        super().__init__(app)
        self.codec = codec
        self.cookie_name = cookie_name

    def _login_redirect(self, path: str) -> RedirectResponse:
        return RedirectResponse(
            f"{LOGIN_PAGE}?{urlencode({'callbackUrl': path})}", status_code=307
        )

    async def dispatch(self, request: Request, call_next):
        path = request.url.path

        if path in _PASSTHROUGH_PATHS or path.startswith(_PASSTHROUGH_PREFIXES):
            return await call_next(request)

        if _is_protected_page(path):
            token = request.cookies.get(self.cookie_name)
            if not token:
                return self._login_redirect(path)
            if self.codec.verify(token) is None:
                logger.debug("Edge gate rejected session token for %s", path)
                response = self._login_redirect(path)
                response.delete_cookie(self.cookie_name, path="/")
                return response
            return await call_next(request)

        response = await call_next(request)
        for header, value in SECURITY_HEADERS.items():
            response.headers[header] = value
        return response


def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    """Handle rate limit exceeded errors."""
    retry_after = getattr(exc, "retry_after", 60)
    return JSONResponse(
        {"error": "Rate limit exceeded", "retry_after": retry_after},
        status_code=429,
        headers={"Retry-After": str(retry_after)},
    )


def install_security_middleware(app: FastAPI, codec: TokenCodec, cookie_name: str) -> None:
    """Install all security middleware on the FastAPI app.

    Call this AFTER all routes are registered but BEFORE the app starts.
    Middleware is added in reverse order (last added = outermost = runs first).
    """
    # 2. Rate limiting
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # 1. Edge session gate (outermost)
    app.add_middleware(EdgeSessionMiddleware, codec=codec, cookie_name=cookie_name)
