"""Database models for codegrant."""

from codegrant.models.user import OAuth2User
from codegrant.models.session import OAuth2Session

__all__ = [
    "OAuth2User",
    "OAuth2Session",
]
