"""Single-use, purpose-tagged token models."""

from datetime import datetime
from enum import Enum

from sqlmodel import Field, SQLModel

from authkit.models.base import UTCDateTime, generate_nanoid, utcnow


class TokenPurpose(str, Enum):
    """What a token may be consumed for."""

    EMAIL_VERIFICATION = "email_verification"
    PASSWORD_RESET = "password_reset"
    MAGIC_LINK = "magic_link"


class TokenRecord(SQLModel, table=True):
    """Stored token row. The plaintext token is never persisted."""

    __tablename__ = "tokens"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE", max_length=21)
    purpose: TokenPurpose = Field(index=True)
    token_hash: str = Field(unique=True, index=True, max_length=64)
    used: bool = Field(default=False)
    used_at: datetime | None = Field(
        default=None,
        sa_type=UTCDateTime,  # type: ignore[call-overload]
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=UTCDateTime,  # type: ignore[call-overload]
    )
    expires_at: datetime = Field(
        sa_type=UTCDateTime,  # type: ignore[call-overload]
        index=True,
        description="Token expiration time",
    )


class VerificationToken(SQLModel):
    """Verification token handed to the caller; carries the plaintext once."""

    token: str
    email: str
    expires_at: datetime
