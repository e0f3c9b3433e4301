"""Orchestration facade: the public surface of authkit."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from authkit.config import AuthSettings
from authkit.errors import (
    AuthError,
    ConfigurationError,
    EmailAlreadyVerified,
    EmailNotVerified,
    EmailSendFailed,
    InvalidCredentials,
    UserNotFound,
)
from authkit.models import Session, TokenPurpose, User, VerificationToken
from authkit.services import identity
from authkit.services.email import EmailSender, get_email_sender
from authkit.services.email_queue import EmailJob, EmailQueue
from authkit.services.passwords import CredentialVerifier, create_hasher
from authkit.services.sessions import DEFAULT_SESSION_TTL, SessionManager
from authkit.services.tokens import DEFAULT_TOKEN_TTL, TokenManager
from authkit.services.validation import normalize_email, validate_email, validate_password
from authkit.storage import StorageGateway, create_storage
from authkit.tasks.maintenance import (
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    ExpirySweeper,
    cleanup_expired,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthPolicy:
    """Lifetimes and behavior switches for the facade."""

    session_ttl: timedelta = DEFAULT_SESSION_TTL
    verification_token_ttl: timedelta = DEFAULT_TOKEN_TTL
    # Issue and send a verification token as part of register()
    send_verification_on_register: bool = False
    # Refuse login (EmailNotVerified) until the email is verified
    require_email_verification: bool = False
    # Drop a user's outstanding verification tokens when a new one is resent
    invalidate_tokens_on_resend: bool = False
    # Seconds between background expiry sweeps (see start_expiry_sweeper)
    sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "AuthPolicy":
        return cls(
            session_ttl=timedelta(hours=settings.session_ttl_hours),
            verification_token_ttl=timedelta(hours=settings.verification_token_ttl_hours),
            send_verification_on_register=settings.send_verification_on_register,
            require_email_verification=settings.require_email_verification,
            invalidate_tokens_on_resend=settings.invalidate_tokens_on_resend,
            sweep_interval_seconds=settings.sweep_interval_seconds,
        )


class Auth:
    """Registration, login, sessions and email verification.

    Every capability is injected here once; the facade keeps no per-request
    state, so one instance can be shared by any number of concurrent tasks.
    Correctness under concurrency comes from the storage layer (unique email
    key, conditional token update, transactions), not from in-process locks.

    Usage:
        auth = Auth(SQLStorage.sqlite("auth.db"))
        await auth.migrate()
        user = await auth.register("a@example.com", "Secure1Aa")
        session = await auth.login("a@example.com", "Secure1Aa")
    """

    def __init__(
        self,
        storage: StorageGateway,
        *,
        credentials: CredentialVerifier | None = None,
        email_sender: EmailSender | None = None,
        email_queue: EmailQueue | None = None,
        policy: AuthPolicy | None = None,
    ) -> None:
        self.storage = storage
        self.credentials = credentials or CredentialVerifier()
        self.email_sender = email_sender
        self.email_queue = email_queue
        self.policy = policy or AuthPolicy()
        self.sessions = SessionManager(self.policy.session_ttl)
        self.tokens = TokenManager(self.policy.verification_token_ttl)
        self.sweeper: ExpirySweeper | None = None

    @classmethod
    def from_settings(cls, settings: AuthSettings) -> "Auth":
        """Build every capability from settings."""
        storage = create_storage(
            settings.database_url,
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            echo=settings.database_echo,
        )
        email_sender = get_email_sender(settings)

        email_queue = None
        if settings.email_queue_enabled:
            if email_sender is None:
                raise ConfigurationError("email_queue_enabled requires an email backend")
            email_queue = EmailQueue(
                email_sender,
                maxsize=settings.email_queue_size,
                max_attempts=settings.email_max_attempts,
                retry_min_seconds=settings.email_retry_min_seconds,
                retry_max_seconds=settings.email_retry_max_seconds,
            )

        return cls(
            storage,
            credentials=CredentialVerifier(create_hasher(settings)),
            email_sender=email_sender,
            email_queue=email_queue,
            policy=AuthPolicy.from_settings(settings),
        )

    @property
    def has_email_sender(self) -> bool:
        return self.email_sender is not None or self.email_queue is not None

    async def migrate(self) -> None:
        await self.storage.migrate()

    async def start_email_worker(self) -> None:
        if self.email_queue is None:
            raise ConfigurationError("No email queue configured")
        await self.email_queue.start()

    def start_expiry_sweeper(self) -> ExpirySweeper:
        """Start deleting expired sessions and tokens in the background.

        Runs every ``policy.sweep_interval_seconds`` until ``close()``.
        """
        if self.sweeper is None:
            self.sweeper = ExpirySweeper(
                self.storage, interval_seconds=self.policy.sweep_interval_seconds
            )
        self.sweeper.start()
        return self.sweeper

    async def close(self) -> None:
        """Stop background work and release storage connections."""
        if self.sweeper is not None:
            await self.sweeper.stop()
        if self.email_queue is not None:
            await self.email_queue.shutdown()
        await self.storage.close()

    async def register(self, email: str, password: str, *, name: str | None = None) -> User:
        """Create an account.

        Raises:
            ValidationError: Malformed email
            WeakPassword: Password fails the acceptance policy
            UserAlreadyExists: Email already registered
            EmailSendFailed: Automatic verification email could not be sent
                (the user has been created regardless)
        """
        email = validate_email(email)
        validate_password(password)

        password_hash = await self.credentials.hash(password)
        user = await identity.create_user(self.storage, email, password_hash, name=name)

        if self.policy.send_verification_on_register and self.has_email_sender:
            token, record = await self.tokens.create(
                self.storage, user.id, TokenPurpose.EMAIL_VERIFICATION
            )
            await self._deliver_verification(user, token, record.expires_at)

        return user

    async def login(
        self,
        email: str,
        password: str,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> Session:
        """Check credentials and open a session.

        Unknown emails and wrong passwords fail identically with
        ``InvalidCredentials``, and an unknown email still pays for one hash
        verification.
        """
        user = await identity.find_by_email(self.storage, email)

        if user is None:
            await self.credentials.verify_dummy(password)
            logger.info("Login failed: unknown account")
            raise InvalidCredentials()

        if not await self.credentials.verify(password, user.password_hash):
            logger.info(f"Login failed: wrong password for user {user.id}")
            raise InvalidCredentials()

        if self.policy.require_email_verification and not user.email_verified:
            raise EmailNotVerified()

        if self.credentials.needs_rehash(user.password_hash):
            new_hash = await self.credentials.hash(password)
            await self.storage.update_password_hash(user.id, new_hash)
            logger.info(f"Upgraded password hash for user {user.id}")

        session = await self.sessions.create(
            self.storage, user.id, ip_address=ip_address, user_agent=user_agent
        )
        logger.info(f"User {user.id} logged in")
        return session

    async def verify(self, token: str) -> User:
        """Resolve a session token to its user (SessionNotFound, SessionExpired)."""
        return await self.sessions.verify(self.storage, token)

    async def logout(self, token: str) -> None:
        """Revoke a session. Idempotent."""
        await self.sessions.delete(self.storage, token)

    async def send_email_verification(self, user_id: str) -> VerificationToken:
        """Issue a verification token and, if a sender is configured, send it.

        A send failure raises ``EmailSendFailed`` but the issued token stays valid.
        """
        user = await identity.find_by_id(self.storage, user_id)
        if user is None:
            raise UserNotFound()
        if user.email_verified:
            raise EmailAlreadyVerified()

        token, record = await self.tokens.create(
            self.storage, user.id, TokenPurpose.EMAIL_VERIFICATION
        )
        await self._deliver_verification(user, token, record.expires_at)

        return VerificationToken(token=token, email=user.email, expires_at=record.expires_at)

    async def verify_email(self, token: str) -> User:
        """Consume a verification token and mark the owner's email verified.

        Both writes share one transaction: a failure or cancellation leaves
        neither the token consumed nor the user flagged.

        Raises:
            InvalidToken, TokenExpired, TokenAlreadyUsed: From token consumption
            EmailAlreadyVerified: Another token already verified this user
        """
        async with self.storage.transaction() as tx:
            user = await self.tokens.consume(tx, token, TokenPurpose.EMAIL_VERIFICATION)
            if user.email_verified:
                raise EmailAlreadyVerified()
            return await identity.mark_email_verified(tx, user.id)

    async def resend_email_verification(self, email: str) -> VerificationToken:
        """Issue another verification token for an unverified account.

        Earlier tokens stay valid unless ``invalidate_tokens_on_resend`` is set.
        """
        user = await identity.find_by_email(self.storage, normalize_email(email))
        if user is None:
            raise UserNotFound()
        if user.email_verified:
            raise EmailAlreadyVerified()

        async with self.storage.transaction() as tx:
            token, record = await self.tokens.resend(
                tx,
                user.id,
                TokenPurpose.EMAIL_VERIFICATION,
                invalidate_previous=self.policy.invalidate_tokens_on_resend,
            )
        await self._deliver_verification(user, token, record.expires_at)

        return VerificationToken(token=token, email=user.email, expires_at=record.expires_at)

    async def cleanup_expired(self) -> dict[str, Any]:
        """Run the expiry sweep on demand."""
        return await cleanup_expired(self.storage)

    async def _deliver_verification(self, user: User, token: str, expires_at: datetime) -> None:
        if self.email_queue is not None and self.email_queue.running:
            job = EmailJob.verification(user.email, token, expires_at, user.id)
            if self.email_queue.enqueue(job):
                return
            logger.warning("Email queue rejected job, sending synchronously")

        sender = self.email_sender or (self.email_queue.sender if self.email_queue else None)
        if sender is None:
            return

        try:
            await sender.send_verification(user.email, token, expires_at)
        except AuthError:
            raise
        except Exception as e:
            raise EmailSendFailed(f"Verification email failed: {e}") from e


__all__ = ["Auth", "AuthPolicy"]
