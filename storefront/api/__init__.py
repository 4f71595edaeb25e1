"""HTTP API routers."""

from storefront.api.auth import router as auth_router
from storefront.api.payments import router as payments_router
from storefront.api.setup import router as setup_router

__all__ = ["auth_router", "payments_router", "setup_router"]
