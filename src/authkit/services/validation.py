"""Input validation for emails and passwords."""

import re

from authkit.errors import ValidationError, WeakPassword

EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 128


def normalize_email(email: str) -> str:
    """Trim and lower-case an email so uniqueness is case-insensitive."""
    return email.strip().lower()


def validate_email(email: str) -> str:
    """Return the normalized email, or raise ``ValidationError``."""
    normalized = normalize_email(email)
    if len(normalized) > 255 or not EMAIL_PATTERN.match(normalized):
        raise ValidationError("Invalid email format")
    return normalized


def validate_password(password: str) -> None:
    """Check the password acceptance policy.

    Requirements:
    - At least 8 characters
    - At most 128 characters
    - Contains at least one uppercase letter
    - Contains at least one lowercase letter
    - Contains at least one digit

    Raises ``WeakPassword`` naming the first rule that failed.
    """
    if len(password) < MIN_PASSWORD_LENGTH:
        raise WeakPassword(
            "min_length", f"Password must be at least {MIN_PASSWORD_LENGTH} characters"
        )

    if len(password) > MAX_PASSWORD_LENGTH:
        raise WeakPassword(
            "max_length", f"Password must be at most {MAX_PASSWORD_LENGTH} characters"
        )

    if not any(c.isupper() for c in password):
        raise WeakPassword("uppercase", "Password must contain at least one uppercase letter")

    if not any(c.islower() for c in password):
        raise WeakPassword("lowercase", "Password must contain at least one lowercase letter")

    if not any(c.isdigit() and c.isascii() for c in password):
        raise WeakPassword("digit", "Password must contain at least one digit")
