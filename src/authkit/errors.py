"""Error taxonomy for every fallible authkit operation.

Each failure kind is its own ``AuthError`` subclass with a stable ``code``,
so hosts can branch on the type (``except TokenExpired``) or map ``code``
onto their own transport (HTTP status, CLI exit code, ...).
"""


class AuthError(Exception):
    """Base class for all authentication errors."""

    code = "auth_error"
    default_message = "Authentication error"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ConfigurationError(AuthError):
    code = "configuration_error"
    default_message = "Invalid authkit configuration"


class ValidationError(AuthError):
    """Malformed email or password input."""

    code = "validation_error"
    default_message = "Invalid input"


class WeakPassword(ValidationError):
    """Password failed the acceptance policy.

    ``rule`` names the first rule that failed so callers can point the user at it.
    """

    code = "weak_password"
    default_message = "Password does not meet the strength requirements"

    def __init__(self, rule: str, message: str | None = None) -> None:
        self.rule = rule
        super().__init__(message)


class UserAlreadyExists(AuthError):
    code = "user_already_exists"
    default_message = "A user with this email already exists"

    def __init__(self, email: str | None = None) -> None:
        self.email = email
        super().__init__(f"User with email {email} already exists" if email else None)


class UserNotFound(AuthError):
    code = "user_not_found"
    default_message = "User not found"


class InvalidCredentials(AuthError):
    """Unknown email or wrong password; callers cannot tell which."""

    code = "invalid_credentials"
    default_message = "Invalid email or password"


class EmailNotVerified(AuthError):
    code = "email_not_verified"
    default_message = "Email address has not been verified"


class SessionNotFound(AuthError):
    code = "session_not_found"
    default_message = "Session not found"


class SessionExpired(AuthError):
    code = "session_expired"
    default_message = "Session has expired"


class InvalidToken(AuthError):
    code = "invalid_token"
    default_message = "Token not found or invalid"


class TokenExpired(AuthError):
    code = "token_expired"
    default_message = "Token has expired"


class TokenAlreadyUsed(AuthError):
    code = "token_already_used"
    default_message = "This token has already been used"


class EmailAlreadyVerified(AuthError):
    code = "email_already_verified"
    default_message = "Email is already verified"


class StorageError(AuthError):
    """Opaque wrapper around a storage backend failure."""

    code = "storage_error"
    default_message = "Storage backend error"


class PasswordHashingError(AuthError):
    code = "password_hashing_error"
    default_message = "Password hashing failed"


class EmailSendFailed(AuthError):
    code = "email_send_failed"
    default_message = "Failed to send email"
