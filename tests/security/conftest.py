"""Security test fixtures.

Responsibilities:
- Wraps the shared `app` fixture in customer_client/admin_client/
  invalid_auth_client/expired_client (session cookies minted with the app's codec)
- Provides make_session_cookie and malicious_payloads
- Scoped to tests/security/ only -- invisible to non-security tests

The global tests/conftest.py builds the app and its in-memory collaborators.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from freezegun import freeze_time

from tests.helpers import ADMIN_ID, CUSTOMER_ID


@pytest.fixture
def make_session_cookie(app):
    """Factory for session cookies.

    Returns {cookie_name: token} for ``user_id``; ``ttl`` (seconds) controls expiry.
    """
    services = app.state.services

    def _make(user_id: str, ttl: int = 3600) -> dict[str, str]:
        return {services.settings.session_cookie_name: services.codec.create(user_id, ttl)}

    return _make


@pytest.fixture
def customer_client(app, make_session_cookie):
    """TestClient with a customer session."""
    with TestClient(
        app, raise_server_exceptions=False, cookies=make_session_cookie(CUSTOMER_ID)
    ) as c:
        yield c


@pytest.fixture
def admin_client(app, make_session_cookie):
    """TestClient with an admin session."""
    with TestClient(
        app, raise_server_exceptions=False, cookies=make_session_cookie(ADMIN_ID)
    ) as c:
        yield c


@pytest.fixture
def invalid_auth_client(app):
    """TestClient with a malformed session cookie."""
    name = app.state.services.settings.session_cookie_name
    with TestClient(
        app, raise_server_exceptions=False, cookies={name: "invalid-not-a-session-token"}
    ) as c:
        yield c


@pytest.fixture
def expired_client(app, make_session_cookie):
    """TestClient whose customer session expired an hour ago."""
    with freeze_time("2020-01-01 00:00:00"):
        cookies = make_session_cookie(CUSTOMER_ID, ttl=60)
    with TestClient(app, raise_server_exceptions=False, cookies=cookies) as c:
        yield c


@pytest.fixture
def malicious_payloads():
    """Collection of injection strings for fuzz testing."""
    return [
        # SQL injection
        "'; DROP TABLE orders; --",
        "1 OR 1=1",
        # XSS
        "<script>alert('xss')</script>",
        "javascript:alert(document.cookie)",
        # Path traversal
        "../../../etc/passwd",
        # Template injection
        "{{7*7}}",
        "${7*7}",
        # Null bytes
        "test\x00admin",
        # Unicode tricks
        "admin\u200b",  # Zero-width space
        # Oversized
        "A" * 100000,
    ]
