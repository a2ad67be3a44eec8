"""Profile decoding and local user/session reconciliation.

The callback flow depends on these capabilities only through the protocols
below, so applications can plug in their own profile shape, user model and
session model. The SQLAlchemy implementations are the defaults.

Both upserts are idempotent per identity: replaying a callback for the same
provider subject (or the same access token) updates the existing row instead
of creating a second one.
"""

import logging
from datetime import UTC, datetime, timedelta
from typing import Any, Optional, Protocol, Type

from pydantic import BaseModel, ValidationError
from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from codegrant.exceptions import PersistenceError, ProfileDecodeError
from codegrant.models.session import OAuth2Session
from codegrant.models.user import OAuth2User
from codegrant.schemas.oauth2 import GitHubProfile, GoogleProfile, ProviderProfile, TokenResponse
from codegrant.utils.encryption import EncryptionService, get_encryption_service
from codegrant.utils.security import sanitize_log_message, token_digest

logger = logging.getLogger(__name__)

PROFILE_MODELS: dict[str, Type[ProviderProfile]] = {
    "google": GoogleProfile,
    "github": GitHubProfile,
}


class ProfileDecoder(Protocol):
    def decode(self, raw: bytes) -> Any: ...


class UserUpsert(Protocol):
    async def upsert_by_profile(self, profile: Any) -> Any: ...


class SessionUpsert(Protocol):
    async def upsert_by_token(self, token: TokenResponse, user: Any) -> Any: ...


class UserLookup(Protocol):
    async def get_user(self, user_id: Any) -> Optional[Any]: ...


class SessionLookup(Protocol):
    async def find_by_token(self, access_token: str) -> Optional[Any]: ...


class JsonProfileDecoder:
    """Decode a JSON profile payload into a pydantic model."""

    def __init__(self, model: Type[BaseModel] = ProviderProfile):
        self.model = model

    @classmethod
    def for_provider(cls, provider: str) -> "JsonProfileDecoder":
        return cls(PROFILE_MODELS.get(provider, ProviderProfile))

    def decode(self, raw: bytes) -> BaseModel:
        """Decode raw profile bytes.

        Raises:
            ProfileDecodeError: If the payload is not valid JSON for the model
        """
        try:
            return self.model.model_validate_json(raw)
        except ValidationError as e:
            logger.error(
                "Malformed profile payload for %s: %d validation errors",
                self.model.__name__,
                e.error_count(),
            )
            raise ProfileDecodeError(f"Cannot decode profile as {self.model.__name__}") from e


class SqlUserReconciler:
    """Upsert OAuth2User rows keyed by (provider, subject)."""

    def __init__(self, db: AsyncSession, provider: str):
        self.db = db
        self.provider = provider

    async def _find(self, subject: str) -> Optional[OAuth2User]:
        result = await self.db.execute(
            select(OAuth2User).where(
                OAuth2User.provider == self.provider,
                OAuth2User.subject == subject,
            )
        )
        return result.scalar_one_or_none()

    @staticmethod
    def _apply(user: OAuth2User, profile: Any) -> None:
        user.email = getattr(profile, "email", None)
        user.name = getattr(profile, "name", None)
        user.profile_json = profile.model_dump_json() if isinstance(profile, BaseModel) else "{}"
        user.last_login_at = datetime.now(UTC)

    async def upsert_by_profile(self, profile: Any) -> OAuth2User:
        """Create the user on first sign-in, update it afterwards.

        Raises:
            PersistenceError: If the database operation fails
        """
        subject = str(profile.identity)
        try:
            user = await self._find(subject)
            created = user is None
            if created:
                user = OAuth2User(provider=self.provider, subject=subject)
                self.db.add(user)
            self._apply(user, profile)
            try:
                await self.db.commit()
            except IntegrityError:
                # A concurrent callback created the same identity first
                await self.db.rollback()
                user = await self._find(subject)
                if user is None:
                    raise
                created = False
                self._apply(user, profile)
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error upserting %s user %s", self.provider, sanitize_log_message(subject))
            raise PersistenceError("Error creating user") from e

        logger.info(
            "%s %s user %s (id=%s)",
            "Created" if created else "Updated",
            self.provider,
            sanitize_log_message(subject),
            user.id,
        )
        return user

    async def get_user(self, user_id: int) -> Optional[OAuth2User]:
        try:
            return await self.db.get(OAuth2User, user_id)
        except SQLAlchemyError as e:
            raise PersistenceError("Error loading user") from e


class SqlSessionReconciler:
    """Upsert OAuth2Session rows keyed by access-token digest."""

    def __init__(self, db: AsyncSession, provider: str, encryption: Optional[EncryptionService] = None):
        self.db = db
        self.provider = provider
        self._encryption = encryption

    async def _find(self, digest: str) -> Optional[OAuth2Session]:
        result = await self.db.execute(
            select(OAuth2Session).where(OAuth2Session.token_digest == digest)
        )
        return result.scalar_one_or_none()

    def _apply(self, session: OAuth2Session, token: TokenResponse, user_id: int) -> None:
        encryption = self._encryption or get_encryption_service()
        session.user_id = user_id
        session.provider = self.provider
        session.token_type = token.token_type
        session.scope = token.scope
        session.refresh_token = encryption.encrypt(token.refresh_token) if token.refresh_token else None
        # expires_in=0 means already expired, not unbounded
        session.expires_at = (
            datetime.now(UTC) + timedelta(seconds=token.expires_in) if token.expires_in is not None else None
        )

    async def _purge_expired(self) -> None:
        """Remove sessions whose access token lifetime has elapsed."""
        await self.db.execute(
            delete(OAuth2Session)
            .where(OAuth2Session.expires_at.is_not(None), OAuth2Session.expires_at <= datetime.now(UTC))
            .execution_options(synchronize_session=False)
        )

    async def upsert_by_token(self, token: TokenResponse, user: OAuth2User) -> OAuth2Session:
        """Create or refresh the session for this access token.

        Raises:
            PersistenceError: If the database operation fails
        """
        digest = token_digest(token.access_token)
        user_id = user.id
        try:
            await self._purge_expired()
            session = await self._find(digest)
            if session is None:
                session = OAuth2Session(token_digest=digest)
                self.db.add(session)
            self._apply(session, token, user_id)
            try:
                await self.db.commit()
            except IntegrityError:
                await self.db.rollback()
                session = await self._find(digest)
                if session is None:
                    raise
                self._apply(session, token, user_id)
                await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error("Error upserting %s session for user id=%s", self.provider, user_id)
            raise PersistenceError("Error creating session") from e
        except (OverflowError, ValueError) as e:
            # Lifetime out of datetime range, or refresh token cannot be encrypted
            await self.db.rollback()
            logger.error("Cannot store %s session for user id=%s: %s", self.provider, user_id, type(e).__name__)
            raise PersistenceError("Error creating session") from e

        logger.info("Upserted %s session id=%s for user id=%s", self.provider, session.id, user_id)
        return session

    async def find_by_token(self, access_token: str) -> Optional[OAuth2Session]:
        try:
            return await self._find(token_digest(access_token))
        except SQLAlchemyError as e:
            raise PersistenceError("Error loading session") from e
