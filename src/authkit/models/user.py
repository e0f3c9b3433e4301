"""User model."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from authkit.models.base import TimestampMixin, UTCDateTime, generate_nanoid


class User(TimestampMixin, SQLModel, table=True):
    """Identity record. Email is stored normalized (trimmed, lower-case)."""

    __tablename__ = "users"

    id: str = Field(default_factory=generate_nanoid, primary_key=True, max_length=21)
    email: str = Field(unique=True, index=True, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    password_hash: str = Field(max_length=255)
    email_verified: bool = Field(default=False)
    email_verified_at: datetime | None = Field(
        default=None,
        sa_type=UTCDateTime,  # type: ignore[call-overload]
    )
