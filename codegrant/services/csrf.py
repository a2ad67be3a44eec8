"""CSRF state binding for the OAuth2 authorization code flow.

The state parameter sent to the provider is bound to the visitor's session
on the authorize leg and checked on the callback leg. The session itself is
reached only through the SessionStore capability, so the binder works with
Starlette's signed cookie session in production and a plain dict in tests.
"""

import logging
import secrets
from typing import Any, MutableMapping, Optional, Protocol

from starlette.requests import Request

from codegrant.exceptions import CsrfTokenMismatchError, CsrfTokenMissingError
from codegrant.utils.security import state_prefix

logger = logging.getLogger(__name__)

CSRF_SESSION_KEY = "oauth2_csrf_token"


class SessionStore(Protocol):
    """Per-visitor key/value capability."""

    def get(self, key: str) -> Optional[Any]: ...

    def set(self, key: str, value: Optional[Any]) -> None: ...


class MappingSessionStore:
    """SessionStore over any mutable mapping.

    Setting a key to None removes it, so a cleared token does not linger
    in the serialized session cookie.
    """

    def __init__(self, data: Optional[MutableMapping[str, Any]] = None):
        self.data = data if data is not None else {}

    def get(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def set(self, key: str, value: Optional[Any]) -> None:
        if value is None:
            self.data.pop(key, None)
        else:
            self.data[key] = value


class RequestSessionStore(MappingSessionStore):
    """SessionStore backed by Starlette's SessionMiddleware session.

    The session cookie is signed with itsdangerous, which makes the handle
    tamper-evident across the authorize and callback requests.
    """

    def __init__(self, request: Request):
        super().__init__(request.session)


class CsrfBinder:
    """Generate, bind and verify single-use CSRF tokens."""

    def __init__(self, session_key: str = CSRF_SESSION_KEY, nbytes: int = 32):
        self.session_key = session_key
        self.nbytes = nbytes

    def generate(self) -> str:
        """Generate a secure random token (32 bytes = 256 bits by default)."""
        return secrets.token_urlsafe(self.nbytes)

    def bind(self, session: SessionStore, token: str) -> None:
        """Bind token to the session, replacing any previously bound token."""
        session.set(self.session_key, token)
        logger.debug("Bound CSRF token: %s...", state_prefix(token))

    def verify(self, session: SessionStore, supplied_state: Optional[str]) -> None:
        """Verify the state returned by the provider and consume the bound token.

        The bound token is cleared only after a successful comparison; a
        mismatch leaves it in place.

        Raises:
            CsrfTokenMissingError: If no token is bound to the session
            CsrfTokenMismatchError: If supplied_state differs from the bound token
        """
        bound = session.get(self.session_key)
        if not bound or not isinstance(bound, str):
            logger.warning("CSRF token not found in session")
            raise CsrfTokenMissingError("CSRF token not found in session")

        if not supplied_state or not secrets.compare_digest(
            bound.encode("utf-8"), supplied_state.encode("utf-8")
        ):
            logger.warning("CSRF state mismatch (state: %s...)", state_prefix(supplied_state))
            raise CsrfTokenMismatchError("State parameter does not match CSRF token")

        session.set(self.session_key, None)
        logger.debug("Verified and consumed CSRF token: %s...", state_prefix(bound))
