"""Password hashing strategies and the credential verifier built on them."""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum

import bcrypt
from argon2 import PasswordHasher as Argon2PasswordHasher
from argon2 import Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from authkit.config import AuthSettings
from authkit.errors import ConfigurationError, PasswordHashingError

logger = logging.getLogger(__name__)

# bcrypt only looks at the first 72 bytes of its input
BCRYPT_MAX_BYTES = 72


class PasswordAlgorithm(str, Enum):
    """Supported password hashing algorithms."""

    ARGON2ID = "argon2id"
    BCRYPT = "bcrypt"


class PasswordHasher(ABC):
    """One hashing algorithm.

    Hashes are self-describing strings (algorithm and parameters embedded, as
    in the PHC / modular crypt formats), so verification needs nothing but the
    stored value. The blocking work runs in a worker thread.
    """

    algorithm: PasswordAlgorithm

    @abstractmethod
    def identifies(self, password_hash: str) -> bool:
        """Whether ``password_hash`` was produced by this algorithm."""

    @abstractmethod
    def hash_sync(self, password: str) -> str: ...

    @abstractmethod
    def verify_sync(self, password: str, password_hash: str) -> bool: ...

    @abstractmethod
    def needs_rehash(self, password_hash: str) -> bool:
        """Whether the hash was made with different parameters than configured."""

    async def hash(self, password: str) -> str:
        try:
            return await asyncio.to_thread(self.hash_sync, password)
        except PasswordHashingError:
            raise
        except Exception as e:
            raise PasswordHashingError(f"{self.algorithm.value} hashing failed: {e}") from e

    async def verify(self, password: str, password_hash: str) -> bool:
        return await asyncio.to_thread(self.verify_sync, password, password_hash)


class Argon2Hasher(PasswordHasher):
    """Argon2id via argon2-cffi (constant-time comparison built in)."""

    algorithm = PasswordAlgorithm.ARGON2ID

    def __init__(self, time_cost: int = 3, memory_cost: int = 65536, parallelism: int = 4):
        self._hasher = Argon2PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            type=Type.ID,
        )

    def identifies(self, password_hash: str) -> bool:
        return password_hash.startswith("$argon2")

    def hash_sync(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify_sync(self, password: str, password_hash: str) -> bool:
        try:
            return self._hasher.verify(password_hash, password)
        except VerifyMismatchError:
            return False
        except InvalidHashError as e:
            raise PasswordHashingError(f"Malformed argon2 hash: {e}") from e
        except VerificationError:
            return False

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return self._hasher.check_needs_rehash(password_hash)
        except InvalidHashError:
            return True


class BcryptHasher(PasswordHasher):
    """bcrypt; input is truncated to 72 bytes as the algorithm does anyway."""

    algorithm = PasswordAlgorithm.BCRYPT

    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def identifies(self, password_hash: str) -> bool:
        return password_hash.startswith(("$2a$", "$2b$", "$2y$"))

    @staticmethod
    def _encode(password: str) -> bytes:
        return password.encode("utf-8")[:BCRYPT_MAX_BYTES]

    def hash_sync(self, password: str) -> str:
        hashed = bcrypt.hashpw(self._encode(password), bcrypt.gensalt(rounds=self.rounds))
        return hashed.decode("utf-8")

    def verify_sync(self, password: str, password_hash: str) -> bool:
        try:
            return bcrypt.checkpw(self._encode(password), password_hash.encode("utf-8"))
        except ValueError as e:
            raise PasswordHashingError(f"Malformed bcrypt hash: {e}") from e

    def needs_rehash(self, password_hash: str) -> bool:
        try:
            return int(password_hash.split("$")[2]) != self.rounds
        except (IndexError, ValueError):
            return True


def create_hasher(settings: AuthSettings) -> PasswordHasher:
    """Build the configured hasher."""
    algorithm = PasswordAlgorithm(settings.password_algorithm)
    if algorithm is PasswordAlgorithm.ARGON2ID:
        return Argon2Hasher(
            time_cost=settings.argon2_time_cost,
            memory_cost=settings.argon2_memory_cost,
            parallelism=settings.argon2_parallelism,
        )
    if algorithm is PasswordAlgorithm.BCRYPT:
        return BcryptHasher(rounds=settings.bcrypt_rounds)
    raise ConfigurationError(f"Unknown password algorithm: {settings.password_algorithm}")


class CredentialVerifier:
    """Hashes new passwords with one algorithm, verifies hashes of any known one.

    Verification picks the hasher from the stored hash's own prefix, so
    switching the configured algorithm never locks existing users out.
    """

    def __init__(
        self,
        hasher: PasswordHasher | None = None,
        legacy: Sequence[PasswordHasher] | None = None,
    ) -> None:
        self.hasher = hasher or Argon2Hasher()
        if legacy is None:
            legacy = [
                h for h in (Argon2Hasher(), BcryptHasher())
                if h.algorithm != self.hasher.algorithm
            ]
        self._hashers = [self.hasher, *legacy]
        self._dummy_hash: str | None = None

    async def hash(self, password: str) -> str:
        return await self.hasher.hash(password)

    async def verify(self, password: str, password_hash: str) -> bool:
        for hasher in self._hashers:
            if hasher.identifies(password_hash):
                return await hasher.verify(password, password_hash)
        raise PasswordHashingError("Unrecognized password hash format")

    def needs_rehash(self, password_hash: str) -> bool:
        if not self.hasher.identifies(password_hash):
            return True
        return self.hasher.needs_rehash(password_hash)

    async def verify_dummy(self, password: str) -> None:
        """Spend the same work as a real verification, for unknown accounts."""
        if self._dummy_hash is None:
            self._dummy_hash = await self.hasher.hash("dummy-password-for-timing")
        await self.hasher.verify(password, self._dummy_hash)
