"""Tests for OAuth2 flow API endpoints (codegrant/routes/oauth2.py).

Drives the full browser flow through the application:
- GET /oauth2/{provider}/authorize - Redirect to provider with bound state
- GET /oauth2/{provider}/callback - Code exchange, reconciliation, credential cookie
- GET /oauth2/protected and /oauth2/{provider}/protected - Cookie-gated resource
"""

from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import Depends, FastAPI, status
from sqlalchemy import func, select

from codegrant.db import get_db
from codegrant.dependencies import require_visitor
from codegrant.models.session import OAuth2Session
from codegrant.models.user import OAuth2User
from codegrant.services.guard import AuthenticatedVisitor


def credential_cookie(response, name: str = "oauth2_credential"):
    """Return the Set-Cookie header for the credential cookie, or None."""
    for header in response.headers.get_list("set-cookie"):
        if header.startswith(f"{name}="):
            return header
    return None


def cookie_pair(set_cookie: str) -> str:
    """name=value part of a Set-Cookie header."""
    return set_cookie.split(";", 1)[0]


async def login(client, code: str = "abc123", state: str = "xyz"):
    await client.get("/oauth2/google/authorize")
    return await client.get("/oauth2/google/callback", params={"code": code, "state": state})


class TestProviders:
    """Test suite for GET /oauth2/providers."""

    async def test_lists_configured_providers(self, client):
        response = await client.get("/oauth2/providers")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"providers": ["google"]}


class TestAuthorize:
    """Test suite for GET /oauth2/{provider}/authorize."""

    async def test_redirects_to_provider(self, client):
        response = await client.get("/oauth2/google/authorize")

        assert response.status_code == status.HTTP_302_FOUND
        location = urlparse(response.headers["location"])
        query = parse_qs(location.query)
        assert location.netloc == "provider.test"
        assert query["state"] == ["xyz"]
        assert query["response_type"] == ["code"]
        assert "codegrant_session" in response.cookies

    async def test_unknown_provider(self, client):
        response = await client.get("/oauth2/unknown/authorize")

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert response.json()["detail"] == "Unknown authentication provider"


class TestCallback:
    """Test suite for GET /oauth2/{provider}/callback."""

    async def test_success_sets_cookie_and_redirects(self, client, db):
        response = await login(client)

        assert response.status_code == status.HTTP_302_FOUND
        assert response.headers["location"] == "/oauth2/protected"
        set_cookie = credential_cookie(response)
        assert set_cookie is not None
        assert "Max-Age=600" in set_cookie
        assert "HttpOnly" in set_cookie
        assert "Secure" in set_cookie
        assert "ya29" not in set_cookie

        assert await db.scalar(select(func.count()).select_from(OAuth2User)) == 1
        assert await db.scalar(select(func.count()).select_from(OAuth2Session)) == 1

    async def test_state_mismatch(self, client, fake_provider):
        await client.get("/oauth2/google/authorize")

        response = await client.get(
            "/oauth2/google/callback", params={"code": "abc123", "state": "different"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert credential_cookie(response) is None
        assert fake_provider.requests == []

    async def test_callback_without_authorize(self, client, fake_provider):
        response = await client.get("/oauth2/google/callback", params={"code": "abc123", "state": "xyz"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert fake_provider.requests == []

    async def test_missing_code(self, client):
        await client.get("/oauth2/google/authorize")

        response = await client.get("/oauth2/google/callback", params={"state": "xyz"})

        assert response.status_code == status.HTTP_400_BAD_REQUEST

    async def test_provider_denied(self, client, fake_provider):
        await client.get("/oauth2/google/authorize")

        response = await client.get(
            "/oauth2/google/callback", params={"error": "access_denied", "state": "xyz"}
        )

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert response.json()["detail"] == "Authorization was denied by the provider."
        assert fake_provider.requests == []

    async def test_unknown_provider(self, client, fake_provider):
        await client.get("/oauth2/google/authorize")

        response = await client.get("/oauth2/unknown/callback", params={"code": "abc123", "state": "xyz"})

        assert response.status_code == status.HTTP_404_NOT_FOUND
        assert fake_provider.requests == []

    async def test_rejected_code(self, client, db):
        response = await login(client, code="stale")

        assert response.status_code == status.HTTP_400_BAD_REQUEST
        assert credential_cookie(response) is None
        assert await db.scalar(select(func.count()).select_from(OAuth2User)) == 0

    async def test_provider_outage_is_opaque(self, client, fake_provider):
        fake_provider.token_status = 503
        fake_provider.token_body = {"error": "internal", "trace": "stack at TokenService.java:42"}

        response = await login(client)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert "TokenService" not in response.text

    async def test_malformed_profile_is_opaque(self, client, fake_provider):
        fake_provider.profile_body = b"<html>maintenance</html>"

        response = await login(client)

        assert response.status_code == status.HTTP_502_BAD_GATEWAY
        assert "maintenance" not in response.text
        assert credential_cookie(response) is None

    async def test_replayed_callback_rejected(self, client):
        first = await login(client)
        assert first.status_code == status.HTTP_302_FOUND

        replay = await client.get("/oauth2/google/callback", params={"code": "abc123", "state": "xyz"})

        assert replay.status_code == status.HTTP_400_BAD_REQUEST

    async def test_user_store_failure_is_opaque_500(self, client, db_engine, fake_provider):
        async with db_engine.begin() as conn:
            await conn.run_sync(OAuth2User.__table__.drop)

        response = await login(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert credential_cookie(response) is None
        assert "location" not in response.headers
        assert "oauth2_users" not in response.text
        assert len(fake_provider.token_requests) == 1

    async def test_oversized_credential_is_500_without_cookie(self, client, db, fake_provider):
        fake_provider.token_body = {"access_token": "ya29.big", "token_type": "Bearer", "id_token": "x" * 5000}

        response = await login(client)

        assert response.status_code == status.HTTP_500_INTERNAL_SERVER_ERROR
        assert credential_cookie(response) is None
        assert "location" not in response.headers


class TestProtected:
    """Test suite for the cookie-gated protected resource."""

    async def test_protected_with_credential_cookie(self, client):
        response = await login(client)
        cookie = cookie_pair(credential_cookie(response))

        protected = await client.get("/oauth2/protected", headers={"Cookie": cookie})

        assert protected.status_code == status.HTTP_200_OK
        body = protected.json()
        assert body["message"] == "You are protected!"
        assert body["provider"] == "google"
        assert body["subject"] == "110248495921238986420"
        assert body["email"] == "jane.doe@example.com"
        assert body["session_expires_at"] is not None

    async def test_provider_scoped_protected_route(self, client):
        response = await login(client)
        cookie = cookie_pair(credential_cookie(response))

        protected = await client.get("/oauth2/google/protected", headers={"Cookie": cookie})

        assert protected.status_code == status.HTTP_200_OK
        assert protected.json()["name"] == "Jane Doe"

    async def test_protected_without_cookie(self, client):
        response = await client.get("/oauth2/protected")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Not authenticated"

    async def test_protected_with_forged_cookie(self, client):
        response = await client.get(
            "/oauth2/protected", headers={"Cookie": "oauth2_credential=gAAAAABforged"}
        )

        assert response.status_code == status.HTTP_401_UNAUTHORIZED


class TestHealth:
    """Test suite for GET /health."""

    async def test_health(self, client):
        response = await client.get("/health")

        assert response.status_code == status.HTTP_200_OK
        assert response.json() == {"status": "healthy"}


class TestRequireVisitor:
    """Test suite for the require_visitor dependency on application routes."""

    @pytest.fixture
    async def extra_client(self, db, registry):
        """Client for a separate app whose only route is gated by require_visitor."""
        extra = FastAPI()

        @extra.get("/me")
        async def me(visitor: AuthenticatedVisitor = Depends(require_visitor)):
            return {"subject": visitor.user.subject, "provider": visitor.provider}

        async def override_get_db():
            yield db

        extra.dependency_overrides[get_db] = override_get_db
        extra.state.registry = registry
        extra.state.default_provider = "google"

        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=extra), base_url="http://test") as ac:
            yield ac

    async def test_extra_route_without_cookie(self, extra_client):
        response = await extra_client.get("/me")

        assert response.status_code == status.HTTP_401_UNAUTHORIZED
        assert response.json()["detail"] == "Not authenticated"

    async def test_extra_route_with_forged_cookie(self, extra_client):
        response = await extra_client.get("/me", headers={"Cookie": "oauth2_credential=gAAAAABforged"})

        assert response.status_code == status.HTTP_401_UNAUTHORIZED

    async def test_extra_route_with_credential_cookie(self, client, extra_client):
        response = await login(client)
        cookie = cookie_pair(credential_cookie(response))

        me = await extra_client.get("/me", headers={"Cookie": cookie})

        assert me.status_code == status.HTTP_200_OK
        assert me.json() == {"subject": "110248495921238986420", "provider": "google"}
