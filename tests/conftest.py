"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from datetime import timedelta
from unittest.mock import AsyncMock

# Set test environment before importing authkit
os.environ["AUTHKIT_ENVIRONMENT"] = "test"

import pytest
from sqlmodel import SQLModel

from authkit.auth import Auth, AuthPolicy
from authkit.models import SessionRecord, TokenPurpose, TokenRecord, User, utcnow
from authkit.services.email import EmailSender
from authkit.services.passwords import Argon2Hasher, BcryptHasher, CredentialVerifier
from authkit.services.security import generate_token, hash_token
from authkit.storage import MemoryStorage, SQLStorage, StorageGateway

POSTGRES_URL = os.environ.get("AUTHKIT_TEST_POSTGRES_URL")

STORAGE_BACKENDS = ["memory", "sqlite"]
if POSTGRES_URL:
    STORAGE_BACKENDS.append("postgres")

PASSWORD = "Secure1Aa"


def fast_argon2() -> Argon2Hasher:
    """Argon2id with the cheapest parameters argon2-cffi accepts."""
    return Argon2Hasher(time_cost=1, memory_cost=1024, parallelism=1)


def fast_bcrypt() -> BcryptHasher:
    return BcryptHasher(rounds=4)


@pytest.fixture(params=STORAGE_BACKENDS)
async def storage(request, tmp_path) -> AsyncGenerator[StorageGateway, None]:
    """Migrated storage gateway, once per backend.

    SQLite uses a file (not ``:memory:``) so concurrent transactions get
    their own connections.
    """
    if request.param == "memory":
        db: StorageGateway = MemoryStorage()
    elif request.param == "sqlite":
        db = SQLStorage.sqlite(str(tmp_path / "authkit.db"))
    else:
        db = SQLStorage.postgres(POSTGRES_URL)

    await db.migrate()
    yield db

    if request.param == "postgres":
        async with db.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)
    await db.close()


@pytest.fixture
def memory_storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def credentials() -> CredentialVerifier:
    return CredentialVerifier(fast_argon2(), legacy=[fast_bcrypt()])


@pytest.fixture
def email_sender() -> AsyncMock:
    """Stand-in for a real sender; records every send_verification call."""
    return AsyncMock(spec=EmailSender)


@pytest.fixture
def auth(storage, credentials) -> Auth:
    return Auth(storage, credentials=credentials)


@pytest.fixture
def auth_with_email(storage, credentials, email_sender) -> Auth:
    return Auth(storage, credentials=credentials, email_sender=email_sender)


def make_auth(storage: StorageGateway, credentials: CredentialVerifier, **policy) -> Auth:
    """Build a facade with a non-default policy.

    Usage:
        auth = make_auth(storage, credentials, require_email_verification=True)
    """
    return Auth(storage, credentials=credentials, policy=AuthPolicy(**policy))


async def create_user(
    storage: StorageGateway,
    email: str = "alice@example.com",
    password_hash: str = "$argon2id$not-a-real-hash",
    **kwargs,
) -> User:
    """Insert a user row directly through the gateway."""
    return await storage.create_user(User(email=email, password_hash=password_hash, **kwargs))


async def create_session_record(
    storage: StorageGateway,
    user_id: str,
    expires_in: timedelta = timedelta(hours=1),
) -> tuple[str, SessionRecord]:
    """Insert a session row; negative ``expires_in`` gives an expired one."""
    token = generate_token()
    now = utcnow()
    record = SessionRecord(
        token_hash=hash_token(token),
        user_id=user_id,
        created_at=now,
        expires_at=now + expires_in,
    )
    return token, await storage.create_session(record)


async def create_token_record(
    storage: StorageGateway,
    user_id: str,
    purpose: TokenPurpose = TokenPurpose.EMAIL_VERIFICATION,
    expires_in: timedelta = timedelta(hours=1),
) -> tuple[str, TokenRecord]:
    """Insert a token row; negative ``expires_in`` gives an expired one."""
    token = generate_token()
    now = utcnow()
    record = TokenRecord(
        user_id=user_id,
        purpose=purpose,
        token_hash=hash_token(token),
        created_at=now,
        expires_at=now + expires_in,
    )
    return token, await storage.create_token(record)
