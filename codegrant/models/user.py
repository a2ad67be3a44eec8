"""Local user record reconciled from a provider profile."""

from datetime import UTC, datetime
from typing import Optional

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from codegrant.db import Base


class OAuth2User(Base):
    """User created on first sign-in and updated on every later one.

    Keyed by (provider, subject): the provider's stable identity for the
    visitor, never the e-mail address, which providers let users change.
    """

    __tablename__ = "oauth2_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    provider: Mapped[str] = mapped_column(String(64), nullable=False)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(320), nullable=True)
    name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    profile_json: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
    )
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (UniqueConstraint("provider", "subject", name="uq_oauth2_users_provider_subject"),)

    def __repr__(self):
        return f"<OAuth2User(id={self.id}, provider={self.provider}, subject={self.subject})>"
