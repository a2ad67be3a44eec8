"""Pydantic schemas for API validation."""

from codegrant.schemas.oauth2 import (
    CallbackParams,
    CookieConfig,
    GitHubProfile,
    GoogleProfile,
    ProviderConfig,
    ProviderListResponse,
    ProviderProfile,
    TokenResponse,
    VisitorResponse,
)

__all__ = [
    "CallbackParams",
    "CookieConfig",
    "GitHubProfile",
    "GoogleProfile",
    "ProviderConfig",
    "ProviderListResponse",
    "ProviderProfile",
    "TokenResponse",
    "VisitorResponse",
]
