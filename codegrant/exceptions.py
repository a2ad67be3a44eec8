"""Custom exceptions for the codegrant OAuth2 flow."""

from typing import Optional


class ProviderConfigError(ValueError):
    """Raised when a provider's configuration is incomplete or unsafe.

    Raised at startup while building the client registry, never during a
    visitor's request.
    """
    pass


class OAuth2FlowError(Exception):
    """Base class for every failure that aborts an authorization flow.

    Attributes:
        status_code: HTTP status surfaced to the visitor
        public_detail: Fixed message shown to the visitor (never internal detail)
        failed_at: Flow state the attempt had reached when it was rejected
    """

    status_code: int = 500
    public_detail: str = "Authentication failed. Please try logging in again."

    def __init__(self, message: Optional[str] = None, failed_at=None):
        self.failed_at = failed_at
        super().__init__(message or self.public_detail)

    @property
    def is_client_error(self) -> bool:
        return 400 <= self.status_code < 500


class UnknownProviderError(OAuth2FlowError):
    """Raised when a provider name has no configured client."""

    status_code = 404
    public_detail = "Unknown authentication provider"

    def __init__(self, provider: str, failed_at=None):
        self.provider = provider
        super().__init__(f"No OAuth2 client configured for provider '{provider}'", failed_at)


class CallbackParamsError(OAuth2FlowError):
    """Raised when the provider callback is missing `code` or `state`."""

    status_code = 400
    public_detail = "Invalid authorization callback. Please try logging in again."


class ProviderDeniedError(CallbackParamsError):
    """Raised when the provider redirects back with an `error` parameter."""

    public_detail = "Authorization was denied by the provider."

    def __init__(self, error: str, description: Optional[str] = None, failed_at=None):
        self.error = error
        self.description = description
        super().__init__(f"Provider returned error '{error}'", failed_at)


class CsrfError(OAuth2FlowError):
    """Base class for CSRF state verification failures."""

    status_code = 400
    public_detail = "Invalid or expired state parameter. Please try logging in again."


class CsrfTokenMissingError(CsrfError):
    """Raised when no CSRF token is bound to the visitor's session."""
    pass


class CsrfTokenMismatchError(CsrfError):
    """Raised when the returned state does not match the bound CSRF token."""
    pass


class InvalidGrantError(OAuth2FlowError):
    """Raised when the provider rejects the authorization code.

    Covers expired, already used and malformed codes. Codes are single-use,
    so this error is never retried.
    """

    status_code = 400
    public_detail = "Authorization code was rejected. Please try logging in again."

    def __init__(self, message: Optional[str] = None, error: Optional[str] = None, failed_at=None):
        self.error = error
        super().__init__(message, failed_at)


class UpstreamNetworkError(OAuth2FlowError):
    """Raised when the token endpoint cannot be reached or answers garbage."""

    status_code = 502
    public_detail = "Authentication provider is unavailable. Please try again later."


class ProfileFetchError(OAuth2FlowError):
    """Raised when the profile request made with a fresh access token fails."""

    status_code = 502
    public_detail = "Authentication provider is unavailable. Please try again later."


class ProfileDecodeError(OAuth2FlowError):
    """Raised when the provider profile payload cannot be decoded."""

    status_code = 502
    public_detail = "Authentication provider is unavailable. Please try again later."


class PersistenceError(OAuth2FlowError):
    """Raised when the local user or session record cannot be reconciled."""

    status_code = 500


class CookieEncodingError(OAuth2FlowError):
    """Raised when the credential cookie cannot be built."""

    status_code = 500


class CredentialCookieError(OAuth2FlowError):
    """Raised by the protected-resource guard for a missing or invalid credential.

    Covers absent, tampered, expired and orphaned (no matching session)
    credential cookies.
    """

    status_code = 401
    public_detail = "Not authenticated"
