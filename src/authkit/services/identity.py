"""Identity store: creation and lookup of user records."""

import logging

from authkit.errors import UserNotFound
from authkit.models import User, utcnow
from authkit.services.validation import normalize_email
from authkit.storage import StorageGateway

logger = logging.getLogger(__name__)


async def create_user(
    db: StorageGateway,
    email: str,
    password_hash: str,
    *,
    name: str | None = None,
) -> User:
    """Create a user.

    Email uniqueness is enforced by the storage layer's unique key rather
    than a prior lookup, so two concurrent registrations cannot both win.

    Raises:
        UserAlreadyExists: If the email is already registered
    """
    user = User(email=normalize_email(email), password_hash=password_hash, name=name)
    created = await db.create_user(user)
    logger.info(f"Created user {created.id}")
    return created


async def find_by_email(db: StorageGateway, email: str) -> User | None:
    return await db.get_user_by_email(normalize_email(email))


async def find_by_id(db: StorageGateway, user_id: str) -> User | None:
    return await db.get_user_by_id(user_id)


async def mark_email_verified(db: StorageGateway, user_id: str) -> User:
    """Flag the user's email as verified.

    Does not check whether it already was; callers decide that.
    """
    user = await db.set_email_verified(user_id, utcnow())
    if user is None:
        raise UserNotFound()
    logger.info(f"Marked email verified for user {user_id}")
    return user
