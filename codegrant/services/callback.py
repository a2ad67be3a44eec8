"""Authorization code flow orchestration.

Drives one visitor through both legs of the flow:

    start():  INITIATED -> AWAITING_CALLBACK
    handle(): AWAITING_CALLBACK -> CSRF_VERIFIED -> TOKEN_EXCHANGED
              -> PROFILE_RESOLVED -> RECONCILED -> COOKIE_ISSUED -> REDIRECTED

Any failure moves the attempt to REJECTED; the raised OAuth2FlowError
records the state it failed from. Attempts are one-shot: there is no
resumption, the visitor restarts at start().
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, List, Optional

from pydantic import ValidationError

from codegrant.exceptions import CallbackParamsError, OAuth2FlowError, ProviderDeniedError
from codegrant.schemas.oauth2 import CallbackParams
from codegrant.services.cookies import CookieAttachment, CredentialCookieIssuer
from codegrant.services.csrf import CsrfBinder, SessionStore
from codegrant.services.reconcile import ProfileDecoder, SessionUpsert, UserUpsert
from codegrant.services.registry import ClientRegistry
from codegrant.utils.security import sanitize_log_message, state_prefix

logger = logging.getLogger(__name__)


class FlowState(str, Enum):
    INITIATED = "initiated"
    AWAITING_CALLBACK = "awaiting_callback"
    CSRF_VERIFIED = "csrf_verified"
    TOKEN_EXCHANGED = "token_exchanged"
    PROFILE_RESOLVED = "profile_resolved"
    RECONCILED = "reconciled"
    COOKIE_ISSUED = "cookie_issued"
    REDIRECTED = "redirected"
    REJECTED = "rejected"


@dataclass
class CallbackResult:
    """Outcome of a completed callback."""

    provider: str
    redirect_url: str
    cookie: CookieAttachment
    profile: Any
    user: Any
    session: Any
    states: List[FlowState] = field(default_factory=list)


class _Attempt:
    """Per-invocation state tracker (never shared between requests)."""

    def __init__(self, provider: str, initial: FlowState):
        self.provider = provider
        self.states = [initial]

    @property
    def current(self) -> FlowState:
        return self.states[-1]

    def advance(self, state: FlowState) -> None:
        self.states.append(state)
        logger.debug("OAuth2 flow %s: %s", sanitize_log_message(self.provider), state.value)

    def reject(self, error: OAuth2FlowError) -> OAuth2FlowError:
        if error.failed_at is None:
            error.failed_at = self.current
        self.states.append(FlowState.REJECTED)
        return error


def parse_callback_params(params: Any) -> CallbackParams:
    """Validate raw callback query parameters.

    Raises:
        ProviderDeniedError: If the provider reported an error instead of a code
        CallbackParamsError: If code or state is missing, empty or oversized
    """
    if not isinstance(params, CallbackParams):
        try:
            params = CallbackParams.model_validate(dict(params))
        except ValidationError as e:
            raise CallbackParamsError("Callback parameters failed validation") from e

    if params.error:
        raise ProviderDeniedError(params.error, params.error_description)
    if not params.code:
        raise CallbackParamsError("Callback is missing the authorization code")
    if not params.state:
        raise CallbackParamsError("Callback is missing the state parameter")
    return params


class CallbackOrchestrator:
    """Authorization code flow state machine.

    Parameterized by capabilities rather than concrete models: the profile
    decoder chooses the profile shape, the user and session upserts choose
    the local models.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        csrf: CsrfBinder,
        cookies: CredentialCookieIssuer,
        profile_decoder: ProfileDecoder,
        users: UserUpsert,
        sessions: SessionUpsert,
    ):
        self.registry = registry
        self.csrf = csrf
        self.cookies = cookies
        self.profile_decoder = profile_decoder
        self.users = users
        self.sessions = sessions

    def start(self, provider: str, session: SessionStore) -> str:
        """Begin a flow: build the authorization URL and bind its state.

        Returns:
            Provider authorization URL to redirect the visitor to

        Raises:
            UnknownProviderError: If the provider is not configured
        """
        attempt = _Attempt(provider, FlowState.INITIATED)
        try:
            client = self.registry.get(provider)
        except OAuth2FlowError as e:
            raise attempt.reject(e)

        auth_url, state = client.build_authorization_url()
        self.csrf.bind(session, state)
        attempt.advance(FlowState.AWAITING_CALLBACK)
        logger.info("Redirecting to %s for authentication (state: %s...)", provider, state_prefix(state))
        return auth_url

    async def handle(self, provider: str, session: SessionStore, params: Any) -> CallbackResult:
        """Complete a flow from the provider callback.

        Args:
            provider: Provider name from the callback route
            session: The visitor's session store
            params: CallbackParams or a mapping of query parameters

        Returns:
            CallbackResult with the credential cookie and redirect target

        Raises:
            OAuth2FlowError: Subclass naming the failed transition; its
                failed_at attribute holds the state the attempt had reached
        """
        attempt = _Attempt(provider, FlowState.INITIATED)
        try:
            return await self._run(attempt, provider, session, params)
        except OAuth2FlowError as e:
            raise attempt.reject(e)

    async def _run(self, attempt: _Attempt, provider: str, session: SessionStore, params: Any) -> CallbackResult:
        # Unknown providers are rejected before any CSRF or network interaction
        client = self.registry.get(provider)
        attempt.advance(FlowState.AWAITING_CALLBACK)

        callback = parse_callback_params(params)
        logger.info("Received %s callback (state: %s...)", provider, state_prefix(callback.state))

        expected = session.get(self.csrf.session_key)
        self.csrf.verify(session, callback.state)
        attempt.advance(FlowState.CSRF_VERIFIED)

        token, raw_profile = await client.exchange_code(callback.code, callback.state, expected)
        attempt.advance(FlowState.TOKEN_EXCHANGED)

        profile = self.profile_decoder.decode(raw_profile)
        attempt.advance(FlowState.PROFILE_RESOLVED)

        # A user row may outlive a failed session upsert; the upsert is keyed
        # by provider identity, so a restarted flow converges on the same row
        user = await self.users.upsert_by_profile(profile)
        local_session = await self.sessions.upsert_by_token(token, user)
        attempt.advance(FlowState.RECONCILED)

        cookie_config = client.cookie_policy()
        cookie = self.cookies.issue(cookie_config, token)
        attempt.advance(FlowState.COOKIE_ISSUED)

        redirect_url = cookie_config.redirect_target()
        attempt.advance(FlowState.REDIRECTED)
        logger.info("OAuth2 login successful for %s, redirecting to %s", provider, redirect_url)

        return CallbackResult(
            provider=provider,
            redirect_url=redirect_url,
            cookie=cookie,
            profile=profile,
            user=user,
            session=local_session,
            states=list(attempt.states),
        )
