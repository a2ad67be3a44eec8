"""OAuth2 authorization code client for a single provider.

Handles the provider-facing half of the flow:
- Authorization URL construction with a fresh state per call
- Authorization code exchange at the token endpoint
- Profile retrieval with the issued access token

A client is an immutable value. Every exchange opens its own httpx client,
so concurrent exchanges for the same provider share no mutable state and
need no locking.
"""

import logging
import secrets
from typing import Optional, Tuple
from urllib.parse import urlencode, urlsplit, urlunsplit

import httpx
from pydantic import ValidationError

from codegrant.exceptions import (
    CsrfTokenMismatchError,
    InvalidGrantError,
    ProfileFetchError,
    UpstreamNetworkError,
)
from codegrant.schemas.oauth2 import CookieConfig, ProviderConfig, TokenResponse
from codegrant.services.csrf import CsrfBinder
from codegrant.utils.security import mask_sensitive, sanitize_log_message, state_prefix

logger = logging.getLogger(__name__)

USER_AGENT = "codegrant"


def _append_query(url: str, params: dict) -> str:
    """Append query parameters, keeping any the endpoint already carries."""
    parts = urlsplit(url)
    query = urlencode(params)
    if parts.query:
        query = f"{parts.query}&{query}"
    return urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))


def _oauth_error(response: httpx.Response) -> Optional[str]:
    """Extract the RFC 6749 `error` code from a token endpoint response."""
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


class AuthorizationCodeClient:
    """Authorization code grant client bound to one provider configuration."""

    def __init__(
        self,
        config: ProviderConfig,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        csrf: Optional[CsrfBinder] = None,
    ):
        """Initialize the client.

        Args:
            config: Provider configuration (frozen)
            transport: Optional httpx transport (tests use httpx.MockTransport)
            csrf: Binder used to generate state values
        """
        self._config = config
        self._transport = transport
        self._csrf = csrf or CsrfBinder()

    def __repr__(self):
        return f"<AuthorizationCodeClient(provider={self._config.name}, client_id={mask_sensitive(self._config.client_id)})>"

    @property
    def config(self) -> ProviderConfig:
        return self._config

    @property
    def provider(self) -> str:
        return self._config.name

    def cookie_policy(self) -> CookieConfig:
        """Credential cookie settings for this provider."""
        return self._config.cookie

    def build_authorization_url(self) -> Tuple[str, str]:
        """Build the provider authorization URL.

        Each call generates a new state; a previously issued state is never
        reused.

        Returns:
            Tuple of (authorization_url, state)
        """
        state = self._csrf.generate()
        params = {
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "state": state,
        }
        if self._config.scopes:
            params["scope"] = " ".join(self._config.scopes)
        for key, value in self._config.extra_authorize_params:
            params.setdefault(key, value)

        auth_url = _append_query(self._config.authorize_url, params)
        logger.info("Created %s authorization URL for state: %s...", self.provider, state_prefix(state))
        return auth_url, state

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=self._transport,
            timeout=self._config.timeout,
            headers={"User-Agent": USER_AGENT, "Accept": "application/json"},
        )

    async def exchange_code(
        self,
        code: str,
        state: str,
        expected_csrf_token: str,
    ) -> Tuple[TokenResponse, bytes]:
        """Exchange an authorization code for a token, then fetch the profile.

        The state check is repeated here so no code is ever sent to the
        provider for a callback that does not belong to this visitor. The
        exchange is never retried: codes are single-use.

        Args:
            code: Authorization code from the callback
            state: State returned by the provider
            expected_csrf_token: Token bound to the visitor's session

        Returns:
            Tuple of (token response, raw profile bytes)

        Raises:
            CsrfTokenMismatchError: If state does not match expected_csrf_token
            InvalidGrantError: If the provider rejects the code
            UpstreamNetworkError: If the token endpoint fails or answers garbage
            ProfileFetchError: If the profile request fails
        """
        if not state or not expected_csrf_token or not secrets.compare_digest(
            state.encode("utf-8"), expected_csrf_token.encode("utf-8")
        ):
            raise CsrfTokenMismatchError("State parameter does not match CSRF token")

        async with self._http_client() as client:
            token = await self._request_token(client, code)
            profile = await self._fetch_profile(client, token)
        return token, profile

    async def _request_token(self, client: httpx.AsyncClient, code: str) -> TokenResponse:
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self._config.redirect_uri,
            "client_id": self._config.client_id,
            "client_secret": self._config.client_secret,
        }

        logger.info("Exchanging code %s for tokens at %s", mask_sensitive(code), self._config.token_url)
        try:
            response = await client.post(self._config.token_url, data=data)
        except httpx.TimeoutException as e:
            logger.error("Token exchange request timed out (%s)", self.provider)
            raise UpstreamNetworkError("Token exchange request timed out") from e
        except httpx.HTTPError as e:
            logger.error("Cannot connect to %s for token exchange: %s", self.provider, str(e))
            raise UpstreamNetworkError(f"Token exchange transport error: {type(e).__name__}") from e

        if response.status_code in (400, 401):
            error = _oauth_error(response)
            logger.warning(
                "Provider %s rejected authorization code (status %s, error %s)",
                self.provider,
                response.status_code,
                sanitize_log_message(error),
            )
            raise InvalidGrantError(f"Token endpoint rejected code: {error or response.status_code}", error=error)

        if response.status_code != 200:
            logger.error("Token exchange failed with status %s (%s)", response.status_code, self.provider)
            raise UpstreamNetworkError(f"Token endpoint returned status {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise UpstreamNetworkError("Token endpoint returned a non-JSON body") from e

        if not isinstance(payload, dict):
            raise UpstreamNetworkError("Token endpoint returned an unexpected body")

        # Some providers (GitHub) report a bad code with 200 and an error body
        if "error" in payload:
            error = str(payload.get("error"))
            logger.warning("Provider %s rejected authorization code (error %s)", self.provider, sanitize_log_message(error))
            raise InvalidGrantError(f"Token endpoint rejected code: {error}", error=error)

        try:
            token = TokenResponse.from_payload(payload)
        except ValidationError as e:
            raise UpstreamNetworkError("Token endpoint returned an invalid token payload") from e

        logger.info("Successfully exchanged authorization code for tokens (%s)", self.provider)
        return token

    async def _fetch_profile(self, client: httpx.AsyncClient, token: TokenResponse) -> bytes:
        try:
            response = await client.get(
                self._config.profile_url,
                headers={"Authorization": f"Bearer {token.access_token}"},
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error("HTTP error fetching %s profile: %s", self.provider, e.response.status_code)
            raise ProfileFetchError(f"Profile endpoint returned status {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            logger.error("Profile request timed out (%s)", self.provider)
            raise ProfileFetchError("Profile request timed out") from e
        except httpx.HTTPError as e:
            logger.error("Cannot connect to %s for profile: %s", self.provider, str(e))
            raise ProfileFetchError(f"Profile transport error: {type(e).__name__}") from e

        logger.info("Successfully fetched %s profile", self.provider)
        return response.content
