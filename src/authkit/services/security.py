"""Random token generation, one-way token digests and constant-time comparison."""

import hashlib
import hmac
import secrets

# 32 bytes = 256 bits of entropy, hex encoded to 64 characters
TOKEN_BYTES = 32


def generate_token() -> str:
    """Generate a URL-safe bearer token with 256 bits of entropy."""
    return secrets.token_hex(TOKEN_BYTES)


def hash_token(token: str) -> str:
    """SHA-256 hex digest of a token, the only form that is ever stored."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def constant_time_compare(a: str, b: str) -> bool:
    """Compare two strings without leaking where they differ."""
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
