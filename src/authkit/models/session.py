"""Session models."""

from datetime import datetime

from sqlmodel import Field, SQLModel

from authkit.models.base import UTCDateTime, utcnow


class SessionRecord(SQLModel, table=True):
    """Stored session row. Only the SHA-256 digest of the bearer token is kept."""

    __tablename__ = "sessions"

    token_hash: str = Field(primary_key=True, max_length=64)
    user_id: str = Field(foreign_key="users.id", index=True, ondelete="CASCADE", max_length=21)
    expires_at: datetime = Field(
        sa_type=UTCDateTime,  # type: ignore[call-overload]
        index=True,
        description="Session expiration time",
    )
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=UTCDateTime,  # type: ignore[call-overload]
    )
    ip_address: str | None = Field(default=None, max_length=64)
    user_agent: str | None = Field(default=None, max_length=512)


class Session(SQLModel):
    """Bearer session handed to the caller at login. ``token`` is never stored."""

    token: str
    user_id: str
    expires_at: datetime
