"""Session API routes — login, logout, current user."""

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from storefront.errors import AuthError
from storefront.security.guard import require_user
from storefront.security.middleware import limiter, login_rate_limit
from storefront.security.session import SessionUser, clear_session_cookie, set_session_cookie
from storefront.services import get_services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


class LoginRequest(BaseModel):
    email: str = Field(min_length=1, max_length=320)
    password: str = Field(min_length=1, max_length=1024)


@router.post("/login")
@limiter.limit(login_rate_limit)
async def login(request: Request, body: LoginRequest):
    """Check credentials and set the httpOnly session cookie."""
    services = get_services(request)
    result = await services.gate.login(body.email, body.password)
    if result is None:
        raise AuthError("Invalid email or password")

    user, token = result
    response = JSONResponse({"user": user.to_dict()})
    set_session_cookie(
        response,
        token,
        name=services.settings.session_cookie_name,
        max_age=services.settings.session_ttl,
        secure=services.settings.cookie_secure or services.settings.is_production,
    )
    return response


@router.post("/logout")
async def logout(request: Request):
    """Delete the session cookie. There is no server-side session to revoke."""
    response = JSONResponse({"message": "Logged out"})
    clear_session_cookie(response, name=get_services(request).settings.session_cookie_name)
    return response


@router.get("/me")
async def me(user: SessionUser = Depends(require_user)):
    return user.to_dict()
