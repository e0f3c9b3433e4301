"""Single-use, purpose-tagged tokens (email verification, password reset, magic links).

Token states:
    Created(unused) --(consume)---------> Used      (terminal)
    Created(unused) --(time passes)-----> Expired   (terminal, detected lazily on read)

Only the SHA-256 digest of a token is stored; the plaintext is handed back
to the caller exactly once, at creation.
"""

import logging
from datetime import datetime, timedelta

from authkit.errors import InvalidToken, TokenAlreadyUsed, TokenExpired, UserNotFound, ValidationError
from authkit.models import TokenPurpose, TokenRecord, User, ensure_utc, utcnow
from authkit.services.security import generate_token, hash_token
from authkit.storage import StorageGateway

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_TTL = timedelta(hours=24)


class TokenManager:
    """Issues, validates and consumes tokens against a storage gateway passed per call."""

    def __init__(self, default_ttl: timedelta = DEFAULT_TOKEN_TTL) -> None:
        if default_ttl <= timedelta(0):
            raise ValidationError("Token TTL must be positive")
        self.default_ttl = default_ttl

    async def create(
        self,
        db: StorageGateway,
        user_id: str,
        purpose: TokenPurpose,
        ttl: timedelta | None = None,
    ) -> tuple[str, TokenRecord]:
        """Issue a token.

        Returns:
            Tuple of (plaintext token, stored record). The plaintext is not
            recoverable afterwards.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if ttl <= timedelta(0):
            raise ValidationError("Token TTL must be positive")

        token = generate_token()
        now = utcnow()
        record = TokenRecord(
            user_id=user_id,
            purpose=purpose,
            token_hash=hash_token(token),
            used=False,
            created_at=now,
            expires_at=now + ttl,
        )
        record = await db.create_token(record)
        logger.info(f"Issued {purpose.value} token {record.id} for user {user_id}")
        return token, record

    async def consume(self, db: StorageGateway, token: str, purpose: TokenPurpose) -> User:
        """Spend a token and return its owner.

        The final step is a conditional update (set used only where still
        unused). If it affects no row, a concurrent consumer got there first
        and this call fails with ``TokenAlreadyUsed`` even though its own read
        saw the token unused.

        Raises:
            InvalidToken: No token with this value and purpose exists
            TokenAlreadyUsed: The token was consumed before (or concurrently)
            TokenExpired: The token is past ``expires_at``
            UserNotFound: The owning user vanished
        """
        record = await db.get_token(hash_token(token), purpose)
        if record is None:
            raise InvalidToken()

        if record.used:
            raise TokenAlreadyUsed()

        now = utcnow()
        if now >= ensure_utc(record.expires_at):
            raise TokenExpired()

        if not await db.mark_token_used(record.id, now):
            logger.info(f"Lost consume race for token {record.id}")
            raise TokenAlreadyUsed()

        user = await db.get_user_by_id(record.user_id)
        if user is None:
            raise UserNotFound()

        logger.info(f"Consumed {purpose.value} token {record.id}")
        return user

    async def resend(
        self,
        db: StorageGateway,
        user_id: str,
        purpose: TokenPurpose,
        ttl: timedelta | None = None,
        *,
        invalidate_previous: bool = False,
    ) -> tuple[str, TokenRecord]:
        """Issue a fresh token for the same purpose.

        By default earlier unused tokens stay valid until used or expired.
        With ``invalidate_previous`` they are removed first; run this inside a
        transaction so the swap is atomic.
        """
        if invalidate_previous:
            removed = await self.invalidate(db, user_id, purpose)
            if removed:
                logger.info(f"Invalidated {removed} outstanding {purpose.value} tokens")
        return await self.create(db, user_id, purpose, ttl)

    async def invalidate(self, db: StorageGateway, user_id: str, purpose: TokenPurpose) -> int:
        return await db.delete_unused_tokens(user_id, purpose)

    async def delete_expired(self, db: StorageGateway, now: datetime | None = None) -> int:
        return await db.delete_expired_tokens(now or utcnow())
