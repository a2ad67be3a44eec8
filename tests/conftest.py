"""Pytest configuration and fixtures."""

import os
from typing import AsyncGenerator
from urllib.parse import parse_qs

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set DATABASE_URL for tests BEFORE importing codegrant.db
# This prevents the module from creating a database file in the working directory
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("CODEGRANT_SESSION_SECRET", "test-session-secret")
os.environ.setdefault("CODEGRANT_PROVIDERS", "google")

# Set encryption key for tests
from cryptography.fernet import Fernet
if "CODEGRANT_COOKIE_KEY" not in os.environ:
    os.environ["CODEGRANT_COOKIE_KEY"] = Fernet.generate_key().decode()

from codegrant.db import Base
from codegrant.models import *  # noqa: F401,F403 - register models with Base.metadata
from codegrant.schemas.oauth2 import CookieConfig, ProviderConfig
from codegrant.services.csrf import CsrfBinder, MappingSessionStore
from codegrant.services.oauth2_client import AuthorizationCodeClient
from codegrant.services.registry import ClientRegistry

PROVIDER_BASE = "https://provider.test"

GOOGLE_PROFILE = {
    "sub": "110248495921238986420",
    "email": "jane.doe@example.com",
    "email_verified": True,
    "name": "Jane Doe",
    "given_name": "Jane",
    "family_name": "Doe",
    "picture": "https://lh3.googleusercontent.com/a/photo.jpg",
    "locale": "en",
}


class FixedStateBinder(CsrfBinder):
    """CsrfBinder that always generates the same token."""

    def __init__(self, token: str):
        super().__init__()
        self.token = token

    def generate(self) -> str:
        return self.token


class FakeProvider:
    """In-process OAuth2 provider served through httpx.MockTransport.

    Codes are single-use: a code is accepted once and rejected with
    invalid_grant afterwards, like a real provider.
    """

    def __init__(self, profile=None):
        self.valid_codes = {"abc123"}
        self.used_codes = set()
        self.requests = []
        self.profile = dict(profile or GOOGLE_PROFILE)
        self.profile_body = None
        self.profile_status = 200
        self.token_status = None
        self.token_body = None
        self.token_exception = None
        self.profile_exception = None

    @property
    def token_requests(self):
        return [r for r in self.requests if r.url.path == "/token"]

    @property
    def profile_requests(self):
        return [r for r in self.requests if r.url.path == "/userinfo"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)

        if request.url.path == "/token":
            if self.token_exception is not None:
                raise self.token_exception
            if self.token_status is not None:
                return httpx.Response(self.token_status, json=self.token_body or {})
            if self.token_body is not None:
                return httpx.Response(200, json=self.token_body)

            form = parse_qs(request.content.decode())
            code = form.get("code", [""])[0]
            if code not in self.valid_codes or code in self.used_codes:
                return httpx.Response(400, json={"error": "invalid_grant"})
            self.used_codes.add(code)
            return httpx.Response(
                200,
                json={
                    "access_token": f"ya29.access-{code}",
                    "token_type": "Bearer",
                    "expires_in": 3599,
                    "scope": "openid email profile",
                    "refresh_token": f"1//refresh-{code}",
                },
            )

        if request.url.path == "/userinfo":
            if self.profile_exception is not None:
                raise self.profile_exception
            if not request.headers.get("Authorization", "").startswith("Bearer ya29."):
                return httpx.Response(401, json={"error": "invalid_token"})
            if self.profile_body is not None:
                return httpx.Response(self.profile_status, content=self.profile_body)
            return httpx.Response(self.profile_status, json=self.profile)

        return httpx.Response(404)

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


def make_provider_config(name: str = "google", **cookie_overrides) -> ProviderConfig:
    """Provider configuration pointing at the fake provider."""
    return ProviderConfig(
        name=name,
        client_id="test-client-id.apps.example.com",
        client_secret="test-client-secret",
        authorize_url=f"{PROVIDER_BASE}/authorize",
        token_url=f"{PROVIDER_BASE}/token",
        profile_url=f"{PROVIDER_BASE}/userinfo",
        redirect_uri=f"http://test/oauth2/{name}/callback",
        scopes=("openid", "email", "profile"),
        cookie=CookieConfig(**cookie_overrides),
    )


@pytest.fixture
def fake_provider():
    """Fake provider with the single valid code "abc123"."""
    return FakeProvider()


@pytest.fixture
def provider_config():
    return make_provider_config()


@pytest.fixture
def state_token():
    """State value every authorization URL carries in tests."""
    return "xyz"


@pytest.fixture
def oauth2_client(provider_config, fake_provider, state_token):
    return AuthorizationCodeClient(
        provider_config,
        transport=fake_provider.transport,
        csrf=FixedStateBinder(state_token),
    )


@pytest.fixture
def registry(oauth2_client):
    return ClientRegistry({"google": oauth2_client})


@pytest.fixture
def session_store():
    """Dict-backed stand-in for the visitor's session."""
    return MappingSessionStore()


@pytest.fixture
def encryption_key():
    return Fernet.generate_key().decode()


@pytest.fixture(scope="function")
async def db_engine():
    """Create a test database engine."""
    # Use in-memory SQLite for testing
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture(scope="function")
async def db(db_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session with automatic rollback."""
    async_session_maker = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    async with async_session_maker() as session:
        yield session
        # Rollback any uncommitted changes
        await session.rollback()


@pytest.fixture
async def app():
    """FastAPI app for testing."""
    from codegrant.main import app as application
    return application


@pytest.fixture
async def client(app, db, registry):
    """Async test client using the test database and fake provider registry.

    Redirects are not followed so tests can inspect Location and Set-Cookie.
    """
    from codegrant.db import get_db
    from codegrant.dependencies import get_registry

    # Override get_db dependency to use test database
    async def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_registry] = lambda: registry
    app.state.default_provider = "google"

    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app),
        base_url="http://test",
        follow_redirects=False,
    ) as ac:
        yield ac

    app.dependency_overrides.clear()
