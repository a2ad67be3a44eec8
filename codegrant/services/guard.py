"""Protected-resource guard: the read path of the credential cookie."""

import logging
from dataclasses import dataclass
from typing import Any, Optional

from starlette.requests import Request

from codegrant.exceptions import CredentialCookieError, OAuth2FlowError
from codegrant.services.cookies import CredentialCookieIssuer
from codegrant.services.reconcile import ProfileDecoder, SessionLookup, UserLookup
from codegrant.services.registry import ClientRegistry

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedVisitor:
    """Identity resolved from a valid credential cookie."""

    provider: str
    profile: Any
    user: Any
    session: Any


class CredentialGuard:
    """Resolve a request's credential cookie to (profile, user, session)."""

    def __init__(
        self,
        registry: ClientRegistry,
        cookies: CredentialCookieIssuer,
        profile_decoder: ProfileDecoder,
        users: UserLookup,
        sessions: SessionLookup,
    ):
        self.registry = registry
        self.cookies = cookies
        self.profile_decoder = profile_decoder
        self.users = users
        self.sessions = sessions

    async def authenticate(
        self,
        request: Request,
        provider: str,
        now: Optional[int] = None,
    ) -> AuthenticatedVisitor:
        """Authenticate a request for a provider's protected resource.

        Raises:
            UnknownProviderError: If the provider is not configured
            CredentialCookieError: If the cookie is missing, invalid or
                expired, or no live session matches it
        """
        client = self.registry.get(provider)
        cookie_config = client.cookie_policy()
        token = self.cookies.read(cookie_config, request.cookies.get(cookie_config.name), now=now)

        session = await self.sessions.find_by_token(token.access_token)
        if session is None or getattr(session, "provider", provider) != provider:
            logger.warning("Credential cookie has no matching %s session", provider)
            raise CredentialCookieError("No session for credential")

        is_expired = getattr(session, "is_expired", None)
        if callable(is_expired) and is_expired():
            logger.info("Session %s expired", getattr(session, "id", "?"))
            raise CredentialCookieError("Session expired")

        user = await self.users.get_user(session.user_id)
        if user is None:
            logger.warning("Session %s references a missing user", getattr(session, "id", "?"))
            raise CredentialCookieError("No user for session")

        try:
            profile = self.profile_decoder.decode(getattr(user, "profile_json", "{}").encode("utf-8"))
        except OAuth2FlowError as e:
            raise CredentialCookieError("Stored profile is unreadable") from e

        return AuthenticatedVisitor(provider=provider, profile=profile, user=user, session=session)

