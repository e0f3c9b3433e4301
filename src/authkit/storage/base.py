"""Storage capability consumed by the lifecycle components."""

from abc import ABC, abstractmethod
from contextlib import AbstractAsyncContextManager
from datetime import datetime

from authkit.models import SessionRecord, TokenPurpose, TokenRecord, User


class StorageGateway(ABC):
    """Atomic CRUD and conditional-update primitives for users, sessions and tokens.

    Every backend must behave identically: the lifecycle components only ever
    see these methods, never SQL, placeholders or driver types.

    Individual calls are atomic on their own. ``transaction()`` groups several
    calls into one unit that is either fully committed or fully discarded.
    """

    @abstractmethod
    def transaction(self) -> AbstractAsyncContextManager["StorageGateway"]:
        """Open a transaction and yield a gateway bound to it.

        Commits when the block exits normally, rolls back on any exception
        (including cancellation). Calling ``transaction()`` on an already
        bound gateway joins the outer transaction.
        """

    @abstractmethod
    async def migrate(self) -> None:
        """Create the schema if it does not exist."""

    @abstractmethod
    async def close(self) -> None:
        """Release connections held by the backend."""

    # Users

    @abstractmethod
    async def create_user(self, user: User) -> User:
        """Insert a user. Raises ``UserAlreadyExists`` on an email collision."""

    @abstractmethod
    async def get_user_by_id(self, user_id: str) -> User | None: ...

    @abstractmethod
    async def get_user_by_email(self, email: str) -> User | None: ...

    @abstractmethod
    async def update_password_hash(self, user_id: str, password_hash: str) -> None: ...

    @abstractmethod
    async def set_email_verified(self, user_id: str, verified_at: datetime) -> User | None:
        """Mark a user's email verified and return the updated row."""

    # Sessions

    @abstractmethod
    async def create_session(self, session: SessionRecord) -> SessionRecord: ...

    @abstractmethod
    async def get_session(self, token_hash: str) -> SessionRecord | None: ...

    @abstractmethod
    async def delete_session(self, token_hash: str) -> bool:
        """Delete a session. Returns False when no row existed."""

    @abstractmethod
    async def delete_expired_sessions(self, now: datetime) -> int:
        """Delete sessions with ``expires_at <= now``; returns the row count."""

    # Tokens

    @abstractmethod
    async def create_token(self, token: TokenRecord) -> TokenRecord: ...

    @abstractmethod
    async def get_token(self, token_hash: str, purpose: TokenPurpose) -> TokenRecord | None: ...

    @abstractmethod
    async def mark_token_used(self, token_id: str, used_at: datetime) -> bool:
        """Flip ``used`` to true only if it is currently false.

        Returns False when zero rows were affected, i.e. another consumer won.
        """

    @abstractmethod
    async def delete_unused_tokens(self, user_id: str, purpose: TokenPurpose) -> int: ...

    @abstractmethod
    async def delete_expired_tokens(self, now: datetime) -> int:
        """Delete tokens with ``expires_at <= now``; returns the row count."""
