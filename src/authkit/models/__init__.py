"""SQLModel database models."""

from authkit.models.base import TimestampMixin, UTCDateTime, ensure_utc, generate_nanoid, utcnow
from authkit.models.session import Session, SessionRecord
from authkit.models.token import TokenPurpose, TokenRecord, VerificationToken
from authkit.models.user import User

__all__ = [
    "Session",
    "SessionRecord",
    "TimestampMixin",
    "TokenPurpose",
    "TokenRecord",
    "UTCDateTime",
    "User",
    "VerificationToken",
    "ensure_utc",
    "generate_nanoid",
    "utcnow",
]
