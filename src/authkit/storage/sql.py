"""SQLAlchemy storage for the embedded (SQLite) and networked (PostgreSQL) backends.

Both backends share one implementation: the statements below are built with
SQLModel/SQLAlchemy expressions, so placeholder syntax and column types are
the dialect's business and never leak past this module.
"""

import asyncio
import copy
import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager, nullcontext
from datetime import datetime

from sqlalchemy import event, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, delete, select

from authkit.errors import StorageError, UserAlreadyExists
from authkit.models import SessionRecord, TokenPurpose, TokenRecord, User, utcnow
from authkit.storage.base import StorageGateway

logger = logging.getLogger(__name__)


def _set_sqlite_pragmas(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode and foreign key enforcement.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _sqlite_url(path: str) -> str:
    if path.startswith("sqlite"):
        return path
    return f"sqlite+aiosqlite:///{path}"


class SQLStorage(StorageGateway):
    """Storage gateway over an async SQLAlchemy engine.

    Usage:
        storage = SQLStorage.sqlite("auth.db")
        await storage.migrate()
        ...
        await storage.close()
    """

    def __init__(self, engine: AsyncEngine, *, single_connection: bool = False) -> None:
        self.engine = engine
        # One shared connection cannot hold two transactions at once
        self._lock = asyncio.Lock() if single_connection else None
        self._session_factory = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )
        self._session: AsyncSession | None = None

    @classmethod
    def sqlite(cls, path: str = "authkit.db", *, echo: bool = False) -> "SQLStorage":
        """Embedded file-based backend (aiosqlite driver).

        ``":memory:"`` is accepted for throwaway databases. It pins a single
        connection, so each unit of work holds an exclusive lock on it until
        it commits or rolls back.
        """
        url = _sqlite_url(path)
        connect_args: dict = {"timeout": 30}
        if url.endswith(":memory:") or url.endswith("://"):
            engine = create_async_engine(
                url, echo=echo, connect_args=connect_args, poolclass=StaticPool
            )
            event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
            return cls(engine, single_connection=True)

        engine = create_async_engine(url, echo=echo, connect_args=connect_args)
        event.listen(engine.sync_engine, "connect", _set_sqlite_pragmas)
        return cls(engine)

    @classmethod
    def postgres(
        cls,
        url: str,
        *,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
    ) -> "SQLStorage":
        """Networked backend (asyncpg driver)."""
        if url.startswith("postgresql://") or url.startswith("postgres://"):
            url = "postgresql+asyncpg://" + url.split("://", 1)[1]
        engine = create_async_engine(
            url,
            echo=echo,
            pool_size=pool_size,
            max_overflow=max_overflow,
            pool_pre_ping=True,
        )
        return cls(engine)

    @property
    def dialect(self) -> str:
        return self.engine.dialect.name

    def _exclusive(self):
        return self._lock if self._lock is not None else nullcontext()

    @asynccontextmanager
    async def _scope(self) -> AsyncIterator[AsyncSession]:
        """Yield the bound session, or a fresh one committed on exit."""
        try:
            if self._session is not None:
                yield self._session
            else:
                async with (
                    self._exclusive(),
                    self._session_factory() as session,
                    session.begin(),
                ):
                    yield session
        except SQLAlchemyError as e:
            raise StorageError(f"Storage operation failed: {e}") from e

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[StorageGateway]:
        if self._session is not None:
            yield self
            return

        try:
            async with (
                self._exclusive(),
                self._session_factory() as session,
                session.begin(),
            ):
                bound = copy.copy(self)
                bound._session = session
                yield bound
        except SQLAlchemyError as e:
            raise StorageError(f"Transaction failed: {e}") from e

    async def migrate(self) -> None:
        try:
            async with self._exclusive(), self.engine.begin() as conn:
                await conn.run_sync(SQLModel.metadata.create_all)
        except SQLAlchemyError as e:
            raise StorageError(f"Schema creation failed: {e}") from e
        logger.info(f"Schema ready on {self.dialect} backend")

    async def close(self) -> None:
        await self.engine.dispose()

    # Users

    async def create_user(self, user: User) -> User:
        async with self._scope() as session:
            session.add(user)
            try:
                await session.flush()
            except IntegrityError as e:
                if "email" in str(e.orig).lower():
                    raise UserAlreadyExists(user.email) from e
                raise
            return user

    async def get_user_by_id(self, user_id: str) -> User | None:
        async with self._scope() as session:
            stmt = select(User).where(User.id == user_id)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> User | None:
        async with self._scope() as session:
            stmt = select(User).where(User.email == email)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def update_password_hash(self, user_id: str, password_hash: str) -> None:
        async with self._scope() as session:
            stmt = (
                update(User)
                .where(User.id == user_id)
                .values(password_hash=password_hash, updated_at=utcnow())
            )
            await session.execute(stmt)

    async def set_email_verified(self, user_id: str, verified_at: datetime) -> User | None:
        async with self._scope() as session:
            stmt = (
                update(User)
                .where(User.id == user_id)
                .values(email_verified=True, email_verified_at=verified_at, updated_at=verified_at)
            )
            await session.execute(stmt)
            return await session.get(User, user_id, populate_existing=True)

    # Sessions

    async def create_session(self, session_record: SessionRecord) -> SessionRecord:
        async with self._scope() as session:
            session.add(session_record)
            await session.flush()
            return session_record

    async def get_session(self, token_hash: str) -> SessionRecord | None:
        async with self._scope() as session:
            stmt = select(SessionRecord).where(SessionRecord.token_hash == token_hash)
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def delete_session(self, token_hash: str) -> bool:
        async with self._scope() as session:
            stmt = delete(SessionRecord).where(SessionRecord.token_hash == token_hash)
            result = await session.execute(stmt)
            return result.rowcount > 0

    async def delete_expired_sessions(self, now: datetime) -> int:
        async with self._scope() as session:
            stmt = delete(SessionRecord).where(SessionRecord.expires_at <= now)
            result = await session.execute(stmt)
            return result.rowcount

    # Tokens

    async def create_token(self, token: TokenRecord) -> TokenRecord:
        async with self._scope() as session:
            session.add(token)
            await session.flush()
            return token

    async def get_token(self, token_hash: str, purpose: TokenPurpose) -> TokenRecord | None:
        async with self._scope() as session:
            stmt = select(TokenRecord).where(
                TokenRecord.token_hash == token_hash,
                TokenRecord.purpose == purpose,
            )
            result = await session.execute(stmt)
            return result.scalar_one_or_none()

    async def mark_token_used(self, token_id: str, used_at: datetime) -> bool:
        async with self._scope() as session:
            # Conditional update: only one concurrent consumer can flip the flag
            stmt = (
                update(TokenRecord)
                .where(TokenRecord.id == token_id, TokenRecord.used.is_(False))  # type: ignore[attr-defined]
                .values(used=True, used_at=used_at)
                .execution_options(synchronize_session=False)
            )
            result = await session.execute(stmt)
            return result.rowcount == 1

    async def delete_unused_tokens(self, user_id: str, purpose: TokenPurpose) -> int:
        async with self._scope() as session:
            stmt = delete(TokenRecord).where(
                TokenRecord.user_id == user_id,
                TokenRecord.purpose == purpose,
                TokenRecord.used.is_(False),  # type: ignore[attr-defined]
            )
            result = await session.execute(stmt)
            return result.rowcount

    async def delete_expired_tokens(self, now: datetime) -> int:
        async with self._scope() as session:
            stmt = delete(TokenRecord).where(TokenRecord.expires_at <= now)
            result = await session.execute(stmt)
            return result.rowcount
