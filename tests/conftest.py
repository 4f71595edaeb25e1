"""Shared fixtures for the storefront payments test suite.

- settings / credentials / order_store / gateway: in-memory collaborators
- rsa_keys: an RS256 key pair plus the matching JWKS document
- app / client: the full FastAPI app wired to the fakes above
- seed_order: put an order into the in-memory store from sync tests
"""

from __future__ import annotations

import asyncio

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric import rsa
from cryptography.hazmat.primitives.serialization import (
    Encoding,
    NoEncryption,
    PrivateFormat,
    PublicFormat,
)
from fastapi.testclient import TestClient
from jose import jwk

from storefront.config import Settings
from storefront.payments.models import Order
from storefront.payments.store import InMemoryOrderStore
from storefront.security.middleware import limiter
from storefront.security.session import ADMIN_ROLE, InMemoryCredentialStore
from storefront.serve import create_app
from tests.helpers import (
    ADMIN_ID,
    CUSTOMER_ID,
    KEY_ID,
    OTHER_CUSTOMER_ID,
    PASSWORD,
    SECRET,
    FakeGateway,
    make_order,
)


@pytest.fixture(autouse=True)
def _reset_rate_limiter():
    """The slowapi limiter is module-level; isolate its counters per test."""
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        session_secret=SECRET,
        acquiring_jwt_token="provider-jwt",
        acquiring_client_id="client-1",
        acquiring_customer_code="300000092",
        public_base_url="https://shop.example",
        webhook_jwks_url="https://provider.example/jwks.json",
    )


@pytest.fixture
def credentials() -> InMemoryCredentialStore:
    store = InMemoryCredentialStore()
    store.add_user(CUSTOMER_ID, "alice@example.com", PASSWORD, name="Alice")
    store.add_user(OTHER_CUSTOMER_ID, "bob@example.com", PASSWORD, name="Bob")
    store.add_user(ADMIN_ID, "admin@example.com", PASSWORD, role=ADMIN_ROLE, name="Admin")
    return store


@pytest.fixture
def order_store() -> InMemoryOrderStore:
    return InMemoryOrderStore()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture(scope="session")
def rsa_keys() -> tuple[str, dict]:
    """(private PEM, JWKS document) for signing provider webhooks."""
    private_key = rsa.generate_private_key(public_exponent=65537, key_size=2048)
    private_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("ascii")
    public_pem = private_key.public_key().public_bytes(
        Encoding.PEM, PublicFormat.SubjectPublicKeyInfo
    )
    key = jwk.construct(public_pem, "RS256").to_dict()
    key["kid"] = KEY_ID
    key["use"] = "sig"
    return private_pem, {"keys": [key]}


@pytest.fixture
def jwks_http_client(rsa_keys) -> httpx.AsyncClient:
    _, jwks = rsa_keys
    return httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=jwks))
    )


@pytest.fixture
def app(settings, credentials, order_store, gateway, jwks_http_client):
    return create_app(
        settings,
        store=order_store,
        credentials=credentials,
        gateway=gateway,
        http_client=jwks_http_client,
    )


@pytest.fixture
def client(app):
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c


@pytest.fixture
def login_as(app, client):
    """Put a session cookie for ``user_id`` on the shared client."""

    def _login(user_id: str) -> TestClient:
        services = app.state.services
        token = services.codec.create(user_id, 3600)
        client.cookies.set(services.settings.session_cookie_name, token)
        return client

    return _login


@pytest.fixture
def seed_order(order_store):
    def _seed(order: Order | None = None, **kwargs) -> Order:
        order = order or make_order(**kwargs)
        asyncio.run(order_store.put(order))
        return order

    return _seed
