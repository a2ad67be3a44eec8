"""Short-lived credential cookie issued at the end of a successful callback.

The cookie value is the provider token payload encrypted with Fernet, so it
is both confidential and tamper-evident. Its lifetime is fixed and short
(minutes), independent of the provider token's own expiry; the cookie only
bootstraps the local session. Nothing about it is stored server-side.
"""

import json
import logging
from dataclasses import dataclass
from typing import Optional

from pydantic import ValidationError
from starlette.responses import Response

from codegrant.exceptions import CookieEncodingError, CredentialCookieError
from codegrant.schemas.oauth2 import CookieConfig, TokenResponse
from codegrant.utils.encryption import EncryptionService, get_encryption_service

logger = logging.getLogger(__name__)

# Browsers drop cookies larger than 4096 bytes (name + value + attributes)
MAX_COOKIE_BYTES = 4096


@dataclass(frozen=True)
class CookieAttachment:
    """A credential cookie ready to be set on a response."""

    name: str
    value: str
    max_age: int
    path: str = "/"
    domain: Optional[str] = None
    secure: bool = True
    http_only: bool = True
    same_site: str = "lax"

    def apply(self, response: Response) -> Response:
        """Set this cookie on a response."""
        response.set_cookie(
            key=self.name,
            value=self.value,
            max_age=self.max_age,
            path=self.path,
            domain=self.domain,
            secure=self.secure,
            httponly=self.http_only,
            samesite=self.same_site,
        )
        return response

    def __repr__(self):
        return f"<CookieAttachment(name={self.name}, max_age={self.max_age}, domain={self.domain}, path={self.path})>"


class CredentialCookieIssuer:
    """Encode token responses into credential cookies and read them back."""

    def __init__(self, encryption: Optional[EncryptionService] = None):
        self._encryption = encryption

    @property
    def encryption(self) -> EncryptionService:
        # Resolved lazily so the key is only required once a cookie is handled
        if self._encryption is None:
            self._encryption = get_encryption_service()
        return self._encryption

    def issue(
        self,
        cookie_config: CookieConfig,
        token: TokenResponse,
        now: Optional[int] = None,
    ) -> CookieAttachment:
        """Build the credential cookie for a token response.

        Args:
            cookie_config: Provider cookie policy (name, TTL, flags, scope)
            token: Token response from the code exchange
            now: Issue timestamp (default: current time)

        Returns:
            CookieAttachment to apply to the redirect response

        Raises:
            CookieEncodingError: If the token cannot be serialized or encrypted,
                or the resulting cookie is too large for browsers
        """
        payload = token.raw or token.model_dump(exclude={"raw"}, exclude_none=True)
        try:
            plaintext = json.dumps(payload, separators=(",", ":"), sort_keys=True)
            value = self.encryption.encrypt(plaintext, current_time=now)
        except (TypeError, ValueError) as e:
            raise CookieEncodingError(f"Cannot encode credential cookie: {type(e).__name__}") from e

        if len(cookie_config.name) + len(value) + 1 > MAX_COOKIE_BYTES:
            raise CookieEncodingError(
                f"Credential cookie too large ({len(value)} bytes); browsers would drop it"
            )

        logger.debug("Issued credential cookie %s (max_age=%s)", cookie_config.name, cookie_config.max_age)
        return CookieAttachment(
            name=cookie_config.name,
            value=value,
            max_age=cookie_config.max_age,
            path=cookie_config.path,
            domain=cookie_config.domain,
            secure=cookie_config.secure,
            http_only=cookie_config.http_only,
            same_site=cookie_config.same_site,
        )

    def read(
        self,
        cookie_config: CookieConfig,
        value: Optional[str],
        now: Optional[int] = None,
    ) -> TokenResponse:
        """Decode a credential cookie back into the token response.

        Args:
            cookie_config: Provider cookie policy (its max_age is the TTL)
            value: Cookie value from the request
            now: Reference time for the TTL check (default: current time)

        Raises:
            CredentialCookieError: If the cookie is absent, tampered, expired
                or does not hold a token payload
        """
        if not value:
            raise CredentialCookieError("Credential cookie missing")

        try:
            plaintext = self.encryption.decrypt(value, ttl=cookie_config.max_age, current_time=now)
            payload = json.loads(plaintext)
        except ValueError as e:
            raise CredentialCookieError("Credential cookie invalid or expired") from e

        if not isinstance(payload, dict):
            raise CredentialCookieError("Credential cookie payload is not an object")

        try:
            return TokenResponse.from_payload(payload)
        except ValidationError as e:
            raise CredentialCookieError("Credential cookie payload holds no access token") from e
