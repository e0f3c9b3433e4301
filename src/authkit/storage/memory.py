"""In-process reference backend.

Holds every row in dictionaries guarded by one asyncio lock. Rows are copied
on the way in and out so callers can never mutate stored state directly, and
writes replace rows instead of mutating them so a transaction can roll back
by restoring a shallow snapshot.
"""

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import TypeVar

from sqlmodel import SQLModel

from authkit.errors import StorageError, UserAlreadyExists
from authkit.models import SessionRecord, TokenPurpose, TokenRecord, User, ensure_utc, utcnow
from authkit.services.security import constant_time_compare
from authkit.storage.base import StorageGateway

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=SQLModel)


def _clone(model: M) -> M:
    return type(model).model_validate(model.model_dump())


@dataclass
class _MemoryState:
    users: dict[str, User] = field(default_factory=dict)
    user_ids_by_email: dict[str, str] = field(default_factory=dict)
    sessions: dict[str, SessionRecord] = field(default_factory=dict)
    tokens: dict[str, TokenRecord] = field(default_factory=dict)

    def snapshot(self) -> "_MemoryState":
        return _MemoryState(
            users=dict(self.users),
            user_ids_by_email=dict(self.user_ids_by_email),
            sessions=dict(self.sessions),
            tokens=dict(self.tokens),
        )

    def restore(self, snapshot: "_MemoryState") -> None:
        self.users = snapshot.users
        self.user_ids_by_email = snapshot.user_ids_by_email
        self.sessions = snapshot.sessions
        self.tokens = snapshot.tokens


class MemoryStorage(StorageGateway):
    """Dictionary-backed storage with the same semantics as the SQL backends."""

    def __init__(self) -> None:
        self._state = _MemoryState()
        self._lock = asyncio.Lock()
        self._bound = False

    @asynccontextmanager
    async def _locked(self) -> AsyncIterator[_MemoryState]:
        if self._bound:
            yield self._state
        else:
            async with self._lock:
                yield self._state

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageGateway]:
        if self._bound:
            yield self
            return

        async with self._lock:
            snapshot = self._state.snapshot()
            bound = copy.copy(self)
            bound._bound = True
            try:
                yield bound
            except BaseException:
                self._state.restore(snapshot)
                logger.debug("Memory transaction rolled back")
                raise

    async def migrate(self) -> None:
        pass

    async def close(self) -> None:
        pass

    # Users

    async def create_user(self, user: User) -> User:
        async with self._locked() as state:
            if user.email in state.user_ids_by_email:
                raise UserAlreadyExists(user.email)
            if user.id in state.users:
                raise StorageError(f"Duplicate user id {user.id}")
            stored = _clone(user)
            state.users[stored.id] = stored
            state.user_ids_by_email[stored.email] = stored.id
            return _clone(stored)

    async def get_user_by_id(self, user_id: str) -> User | None:
        async with self._locked() as state:
            user = state.users.get(user_id)
            return _clone(user) if user else None

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._locked() as state:
            user_id = state.user_ids_by_email.get(email)
            if user_id is None:
                return None
            return _clone(state.users[user_id])

    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        async with self._locked() as state:
            existing = state.users.get(user_id)
            if existing is None:
                return
            updated = _clone(existing)
            updated.password_hash = password_hash
            updated.updated_at = utcnow()
            state.users[user_id] = updated

    async def set_email_verified(self, user_id: str, verified_at: datetime) -> User | None:
        async with self._locked() as state:
            existing = state.users.get(user_id)
            if existing is None:
                return None
            updated = _clone(existing)
            updated.email_verified = True
            updated.email_verified_at = ensure_utc(verified_at)
            updated.updated_at = ensure_utc(verified_at)
            state.users[user_id] = updated
            return _clone(updated)

    # Sessions

    async def create_session(self, session: SessionRecord) -> SessionRecord:
        async with self._locked() as state:
            if session.user_id not in state.users:
                raise StorageError(f"Session references unknown user {session.user_id}")
            if session.token_hash in state.sessions:
                raise StorageError("Duplicate session token")
            state.sessions[session.token_hash] = _clone(session)
            return _clone(session)

    async def get_session(self, token_hash: str) -> SessionRecord | None:
        async with self._locked() as state:
            session = state.sessions.get(token_hash)
            return _clone(session) if session else None

    async def delete_session(self, token_hash: str) -> bool:
        async with self._locked() as state:
            return state.sessions.pop(token_hash, None) is not None

    async def delete_expired_sessions(self, now: datetime) -> int:
        now = ensure_utc(now)
        async with self._locked() as state:
            expired = [key for key, s in state.sessions.items() if s.expires_at <= now]
            for key in expired:
                del state.sessions[key]
            return len(expired)

    # Tokens

    async def create_token(self, token: TokenRecord) -> TokenRecord:
        async with self._locked() as state:
            if token.user_id not in state.users:
                raise StorageError(f"Token references unknown user {token.user_id}")
            if any(t.token_hash == token.token_hash for t in state.tokens.values()):
                raise StorageError("Duplicate token hash")
            state.tokens[token.id] = _clone(token)
            return _clone(token)

    async def get_token(self, token_hash: str, purpose: TokenPurpose) -> TokenRecord | None:
        async with self._locked() as state:
            for token in state.tokens.values():
                if token.purpose == purpose and constant_time_compare(token.token_hash, token_hash):
                    return _clone(token)
            return None

    async def mark_token_used(self, token_id: str, used_at: datetime) -> bool:
        async with self._locked() as state:
            existing = state.tokens.get(token_id)
            if existing is None or existing.used:
                return False
            updated = _clone(existing)
            updated.used = True
            updated.used_at = ensure_utc(used_at)
            state.tokens[token_id] = updated
            return True

    async def delete_unused_tokens(self, user_id: str, purpose: TokenPurpose) -> int:
        async with self._locked() as state:
            doomed = [
                key
                for key, t in state.tokens.items()
                if t.user_id == user_id and t.purpose == purpose and not t.used
            ]
            for key in doomed:
                del state.tokens[key]
            return len(doomed)

    async def delete_expired_tokens(self, now: datetime) -> int:
        now = ensure_utc(now)
        async with self._locked() as state:
            expired = [key for key, t in state.tokens.items() if t.expires_at <= now]
            for key in expired:
                del state.tokens[key]
            return len(expired)
