"""Storage backends."""

from authkit.errors import ConfigurationError
from authkit.storage.base import StorageGateway
from authkit.storage.memory import MemoryStorage
from authkit.storage.sql import SQLStorage


def create_storage(
    url: str,
    *,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
) -> StorageGateway:
    """Build a storage backend from a database URL.

    ``sqlite[+aiosqlite]://`` selects the embedded backend,
    ``postgresql[+asyncpg]://`` the networked one and ``memory://`` the
    in-process reference backend.
    """
    scheme = url.split("://", 1)[0].split("+", 1)[0]
    if scheme == "sqlite":
        if "+" not in url.split("://", 1)[0]:
            url = "sqlite+aiosqlite://" + url.split("://", 1)[1]
        return SQLStorage.sqlite(url, echo=echo)
    if scheme in ("postgresql", "postgres"):
        return SQLStorage.postgres(url, pool_size=pool_size, max_overflow=max_overflow, echo=echo)
    if scheme == "memory":
        return MemoryStorage()
    raise ConfigurationError(f"Unsupported database URL scheme: {scheme}")


__all__ = ["MemoryStorage", "SQLStorage", "StorageGateway", "create_storage"]
