"""Embeddable authentication core: identities, sessions and verification tokens."""

from authkit.auth import Auth, AuthPolicy
from authkit.config import AuthSettings, get_settings
from authkit.errors import (
    AuthError,
    ConfigurationError,
    EmailAlreadyVerified,
    EmailNotVerified,
    EmailSendFailed,
    InvalidCredentials,
    InvalidToken,
    PasswordHashingError,
    SessionExpired,
    SessionNotFound,
    StorageError,
    TokenAlreadyUsed,
    TokenExpired,
    UserAlreadyExists,
    UserNotFound,
    ValidationError,
    WeakPassword,
)
from authkit.models import Session, TokenPurpose, User, VerificationToken
from authkit.services.email import EmailSender
from authkit.services.passwords import CredentialVerifier
from authkit.storage import MemoryStorage, SQLStorage, StorageGateway, create_storage

__version__ = "0.1.0"

__all__ = [
    "Auth",
    "AuthError",
    "AuthPolicy",
    "AuthSettings",
    "ConfigurationError",
    "CredentialVerifier",
    "EmailAlreadyVerified",
    "EmailNotVerified",
    "EmailSendFailed",
    "EmailSender",
    "InvalidCredentials",
    "InvalidToken",
    "MemoryStorage",
    "PasswordHashingError",
    "SQLStorage",
    "Session",
    "SessionExpired",
    "SessionNotFound",
    "StorageError",
    "StorageGateway",
    "TokenAlreadyUsed",
    "TokenExpired",
    "TokenPurpose",
    "User",
    "UserAlreadyExists",
    "UserNotFound",
    "ValidationError",
    "VerificationToken",
    "WeakPassword",
    "__version__",
    "create_storage",
    "get_settings",
]
