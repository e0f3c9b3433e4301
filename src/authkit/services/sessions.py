"""Bearer session lifecycle.

Session states:
    Active --(expires_at reached)--> Expired   (terminal, detected lazily on read)
    Active --(delete)--------------> Deleted   (terminal)
"""

import logging
from datetime import datetime, timedelta

from authkit.errors import SessionExpired, SessionNotFound, UserNotFound, ValidationError
from authkit.models import Session, SessionRecord, User, ensure_utc, utcnow
from authkit.services.security import generate_token, hash_token
from authkit.storage import StorageGateway

logger = logging.getLogger(__name__)

DEFAULT_SESSION_TTL = timedelta(hours=24)


class SessionManager:
    """Issues, validates and revokes sessions.

    Holds no storage handle; every call receives the gateway to work against.
    """

    def __init__(self, default_ttl: timedelta = DEFAULT_SESSION_TTL) -> None:
        if default_ttl <= timedelta(0):
            raise ValidationError("Session TTL must be positive")
        self.default_ttl = default_ttl

    async def create(
        self,
        db: StorageGateway,
        user_id: str,
        ttl: timedelta | None = None,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Start a session for ``user_id``; the plaintext token is returned once."""
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValidationError("Session TTL must be positive")

        token = generate_token()
        now = utcnow()
        record = SessionRecord(
            token_hash=hash_token(token),
            user_id=user_id,
            created_at=now,
            expires_at=now + ttl,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        await db.create_session(record)
        logger.debug(f"Created session for user {user_id}")

        return Session(token=token, user_id=user_id, expires_at=record.expires_at)

    async def verify(self, db: StorageGateway, token: str) -> User:
        """Resolve a bearer token to its user.

        Raises:
            SessionNotFound: No session exists for the token
            SessionExpired: The session exists but ``now >= expires_at``
            UserNotFound: The owning user vanished
        """
        token_hash = hash_token(token)
        record = await db.get_session(token_hash)
        if record is None:
            raise SessionNotFound()

        if utcnow() >= ensure_utc(record.expires_at):
            await db.delete_session(token_hash)
            logger.debug(f"Removed expired session for user {record.user_id}")
            raise SessionExpired()

        user = await db.get_user_by_id(record.user_id)
        if user is None:
            logger.error(f"Session references missing user {record.user_id}")
            raise UserNotFound()
        return user

    async def delete(self, db: StorageGateway, token: str) -> None:
        """Revoke a session. Unknown tokens are ignored."""
        deleted = await db.delete_session(hash_token(token))
        if deleted:
            logger.debug("Session revoked")

    async def delete_expired(self, db: StorageGateway, now: datetime | None = None) -> int:
        return await db.delete_expired_sessions(now or utcnow())
