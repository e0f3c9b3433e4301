"""Library configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


class AuthSettings(BaseSettings):
    """Settings loaded from ``AUTHKIT_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="AUTHKIT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./authkit.db",
        description="SQLAlchemy async URL (sqlite+aiosqlite or postgresql+asyncpg)",
    )
    database_pool_size: int = Field(default=5, description="Connection pool size")
    database_max_overflow: int = Field(default=10, description="Max overflow connections")
    database_echo: bool = Field(default=False, description="Echo SQL statements")

    # Password hashing
    password_algorithm: Literal["argon2id", "bcrypt"] = Field(
        default="argon2id", description="Algorithm used for new password hashes"
    )
    argon2_time_cost: int = Field(default=3, description="Argon2 iterations")
    argon2_memory_cost: int = Field(default=65536, description="Argon2 memory in KiB")
    argon2_parallelism: int = Field(default=4, description="Argon2 lanes")
    bcrypt_rounds: int = Field(default=12, description="bcrypt log2 work factor")

    # Lifetimes
    session_ttl_hours: int = Field(default=24, description="Session lifetime in hours")
    verification_token_ttl_hours: int = Field(
        default=24, description="Email verification token lifetime in hours"
    )

    # Policies
    send_verification_on_register: bool = Field(
        default=False, description="Send a verification email right after registration"
    )
    require_email_verification: bool = Field(
        default=False, description="Refuse login until the email is verified"
    )
    invalidate_tokens_on_resend: bool = Field(
        default=False, description="Drop outstanding verification tokens on resend"
    )

    # Email
    email_backend: Literal["none", "console", "smtp", "resend"] = Field(
        default="none", description="Email backend (none disables sending)"
    )
    email_from: str = Field(
        default="AuthKit <noreply@example.com>", description="From address for emails"
    )
    app_url: str = Field(
        default="http://localhost:5173", description="Frontend URL used in verification links"
    )

    # SMTP settings (when email_backend=smtp)
    smtp_host: str = Field(default="", description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: str = Field(default="", description="SMTP username")
    smtp_password: str = Field(default="", description="SMTP password")
    smtp_use_tls: bool = Field(default=True, description="Use TLS for SMTP")

    # Resend settings (when email_backend=resend)
    resend_api_key: str = Field(default="", description="Resend API key")

    # Background email queue
    email_queue_enabled: bool = Field(default=False, description="Send emails from a worker")
    email_queue_size: int = Field(default=100, description="Max queued email jobs")
    email_max_attempts: int = Field(default=2, description="Send attempts per email job")
    email_retry_min_seconds: float = Field(default=1.0, description="First retry delay")
    email_retry_max_seconds: float = Field(default=60.0, description="Retry delay cap")

    # Maintenance
    sweep_interval_seconds: int = Field(
        default=3600, description="Interval between expired session/token sweeps"
    )

    # App
    environment: Literal["development", "production", "test"] = Field(
        default="development", description="Runtime environment"
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_production(self) -> bool:
        """Check if running in production."""
        return self.environment == "production"

    @computed_field  # type: ignore[prop-decorator]
    @property
    def is_development(self) -> bool:
        """Check if running in development."""
        return self.environment == "development"


@lru_cache
def get_settings() -> AuthSettings:
    """Get cached settings instance."""
    return AuthSettings()
