"""End-to-end tests for the Auth facade."""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from authkit.auth import Auth, AuthPolicy
from authkit.config import AuthSettings
from authkit.errors import (
    ConfigurationError,
    EmailAlreadyVerified,
    EmailNotVerified,
    EmailSendFailed,
    InvalidCredentials,
    InvalidToken,
    SessionExpired,
    SessionNotFound,
    TokenAlreadyUsed,
    TokenExpired,
    UserAlreadyExists,
    UserNotFound,
    ValidationError,
    WeakPassword,
)
from authkit.models import TokenPurpose, User
from authkit.services.email import EmailSender, VerificationEmailSender
from authkit.services.email_queue import EmailQueue
from authkit.services.security import hash_token
from authkit.storage import MemoryStorage
from conftest import PASSWORD, create_user, fast_bcrypt, make_auth

VERIFY = TokenPurpose.EMAIL_VERIFICATION


class TestRegister:
    """Tests for registration."""

    @pytest.mark.asyncio
    async def test_register(self, auth):
        """Test a registered user is stored unverified with a hashed password."""
        user = await auth.register("Alice@Example.com", PASSWORD, name="Alice")

        assert user.email == "alice@example.com"
        assert user.name == "Alice"
        assert user.email_verified is False
        assert user.password_hash != PASSWORD
        assert user.password_hash.startswith("$argon2id$")

    @pytest.mark.asyncio
    async def test_duplicate_email(self, auth):
        await auth.register("alice@example.com", PASSWORD)

        with pytest.raises(UserAlreadyExists):
            await auth.register("ALICE@example.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_concurrent_registration(self, auth):
        """Test only one of several concurrent registrations of an email wins."""
        results = await asyncio.gather(
            *(auth.register("alice@example.com", PASSWORD) for _ in range(3)),
            return_exceptions=True,
        )

        assert len([r for r in results if isinstance(r, User)]) == 1
        assert len([r for r in results if isinstance(r, UserAlreadyExists)]) == 2

    @pytest.mark.asyncio
    async def test_invalid_email(self, auth):
        with pytest.raises(ValidationError, match="Invalid email format"):
            await auth.register("not-an-email", PASSWORD)

    @pytest.mark.asyncio
    async def test_weak_password(self, auth, storage):
        """Test a weak password is rejected before anything is stored."""
        with pytest.raises(WeakPassword) as exc_info:
            await auth.register("alice@example.com", "password")

        assert exc_info.value.rule == "uppercase"
        assert await storage.get_user_by_email("alice@example.com") is None

    @pytest.mark.asyncio
    async def test_sends_verification_when_enabled(self, storage, credentials, email_sender):
        """Test registration sends a verification email under that policy."""
        auth = Auth(
            storage,
            credentials=credentials,
            email_sender=email_sender,
            policy=AuthPolicy(send_verification_on_register=True),
        )

        user = await auth.register("alice@example.com", PASSWORD)

        email_sender.send_verification.assert_awaited_once()
        email, token, _ = email_sender.send_verification.call_args[0]
        assert email == "alice@example.com"
        verified = await auth.verify_email(token)
        assert verified.id == user.id

    @pytest.mark.asyncio
    async def test_no_verification_email_without_sender(self, storage, credentials):
        auth = make_auth(storage, credentials, send_verification_on_register=True)

        user = await auth.register("alice@example.com", PASSWORD)

        assert user.email_verified is False

    @pytest.mark.asyncio
    async def test_send_failure_keeps_user(self, storage, credentials, email_sender):
        """Test a failed registration email still leaves the user registered."""
        email_sender.send_verification.side_effect = EmailSendFailed()
        auth = Auth(
            storage,
            credentials=credentials,
            email_sender=email_sender,
            policy=AuthPolicy(send_verification_on_register=True),
        )

        with pytest.raises(EmailSendFailed):
            await auth.register("alice@example.com", PASSWORD)

        assert await storage.get_user_by_email("alice@example.com") is not None


class TestLogin:
    """Tests for login, session verification and logout."""

    @pytest.mark.asyncio
    async def test_full_session_lifecycle(self, auth):
        """Test register, login, verify and logout end to end."""
        user = await auth.register("alice@example.com", PASSWORD)

        session = await auth.login("alice@example.com", PASSWORD)
        assert session.user_id == user.id
        assert (await auth.verify(session.token)).id == user.id

        await auth.logout(session.token)

        with pytest.raises(SessionNotFound):
            await auth.verify(session.token)

    @pytest.mark.asyncio
    async def test_login_is_case_insensitive(self, auth):
        await auth.register("alice@example.com", PASSWORD)

        session = await auth.login("  ALICE@example.com", PASSWORD)

        assert session.token

    @pytest.mark.asyncio
    async def test_wrong_password_and_unknown_email_look_the_same(self, auth):
        """Test both credential failures are indistinguishable to the caller."""
        await auth.register("alice@example.com", PASSWORD)

        with pytest.raises(InvalidCredentials) as wrong_password:
            await auth.login("alice@example.com", "Wrong1Password")
        with pytest.raises(InvalidCredentials) as unknown_email:
            await auth.login("nobody@example.com", PASSWORD)

        assert str(wrong_password.value) == str(unknown_email.value)
        assert wrong_password.value.code == unknown_email.value.code == "invalid_credentials"

    @pytest.mark.asyncio
    async def test_unknown_email_still_verifies_a_hash(self, auth):
        """Test an unknown email spends one dummy hash verification."""
        with patch.object(auth.credentials, "verify_dummy", new_callable=AsyncMock) as dummy:
            with pytest.raises(InvalidCredentials):
                await auth.login("nobody@example.com", PASSWORD)

        dummy.assert_awaited_once_with(PASSWORD)

    @pytest.mark.asyncio
    async def test_session_metadata(self, auth, storage):
        await auth.register("alice@example.com", PASSWORD)

        session = await auth.login(
            "alice@example.com", PASSWORD, ip_address="10.0.0.1", user_agent="pytest"
        )

        record = await storage.get_session(hash_token(session.token))
        assert record.ip_address == "10.0.0.1"
        assert record.user_agent == "pytest"

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, auth):
        """Test logging out one session leaves the user's others active."""
        user = await auth.register("alice@example.com", PASSWORD)
        first = await auth.login("alice@example.com", PASSWORD)
        second = await auth.login("alice@example.com", PASSWORD)

        assert first.token != second.token
        await auth.logout(first.token)

        assert (await auth.verify(second.token)).id == user.id

    @pytest.mark.asyncio
    async def test_logout_is_idempotent(self, auth):
        await auth.register("alice@example.com", PASSWORD)
        session = await auth.login("alice@example.com", PASSWORD)

        await auth.logout(session.token)
        await auth.logout(session.token)
        await auth.logout("never-issued")

    @pytest.mark.asyncio
    async def test_expired_session(self, auth):
        await auth.register("alice@example.com", PASSWORD)
        session = await auth.login("alice@example.com", PASSWORD)

        later = session.expires_at + timedelta(seconds=1)
        with patch("authkit.services.sessions.utcnow", return_value=later):
            with pytest.raises(SessionExpired):
                await auth.verify(session.token)

    @pytest.mark.asyncio
    async def test_session_ttl_from_policy(self, storage, credentials):
        auth = make_auth(storage, credentials, session_ttl=timedelta(minutes=30))
        await auth.register("alice@example.com", PASSWORD)

        session = await auth.login("alice@example.com", PASSWORD)

        user = await auth.verify(session.token)
        assert user.email == "alice@example.com"
        record = await storage.get_session(hash_token(session.token))
        assert record.expires_at - record.created_at == timedelta(minutes=30)

    @pytest.mark.asyncio
    async def test_rehashes_legacy_hash(self, auth, storage):
        """Test a login upgrades a hash made with another algorithm."""
        legacy_hash = fast_bcrypt().hash_sync(PASSWORD)
        user = await create_user(storage, password_hash=legacy_hash)

        await auth.login("alice@example.com", PASSWORD)

        reloaded = await storage.get_user_by_id(user.id)
        assert reloaded.password_hash.startswith("$argon2id$")
        await auth.login("alice@example.com", PASSWORD)

    @pytest.mark.asyncio
    async def test_require_email_verification(self, storage, credentials):
        """Test the verification gate applies only to correct credentials."""
        auth = make_auth(storage, credentials, require_email_verification=True)
        user = await auth.register("alice@example.com", PASSWORD)

        with pytest.raises(EmailNotVerified):
            await auth.login("alice@example.com", PASSWORD)
        with pytest.raises(InvalidCredentials):
            await auth.login("alice@example.com", "Wrong1Password")

        verification = await auth.send_email_verification(user.id)
        await auth.verify_email(verification.token)

        session = await auth.login("alice@example.com", PASSWORD)
        assert session.user_id == user.id


class TestEmailVerification:
    """Tests for issuing and consuming email verification tokens."""

    @pytest.mark.asyncio
    async def test_send_and_verify(self, auth_with_email, email_sender):
        """Test the verification happy path."""
        auth = auth_with_email
        user = await auth.register("alice@example.com", PASSWORD)

        verification = await auth.send_email_verification(user.id)

        assert verification.email == "alice@example.com"
        assert len(verification.token) == 64
        email_sender.send_verification.assert_awaited_once_with(
            "alice@example.com", verification.token, verification.expires_at
        )

        verified = await auth.verify_email(verification.token)
        assert verified.email_verified is True
        assert verified.email_verified_at is not None

    @pytest.mark.asyncio
    async def test_works_without_sender(self, auth):
        """Test tokens can be issued and consumed with no sender configured."""
        user = await auth.register("alice@example.com", PASSWORD)

        verification = await auth.send_email_verification(user.id)

        assert (await auth.verify_email(verification.token)).id == user.id

    @pytest.mark.asyncio
    async def test_unknown_user(self, auth):
        with pytest.raises(UserNotFound):
            await auth.send_email_verification("missing")

    @pytest.mark.asyncio
    async def test_already_verified(self, auth):
        user = await auth.register("alice@example.com", PASSWORD)
        verification = await auth.send_email_verification(user.id)
        await auth.verify_email(verification.token)

        with pytest.raises(EmailAlreadyVerified):
            await auth.send_email_verification(user.id)

    @pytest.mark.asyncio
    async def test_token_is_single_use(self, auth):
        user = await auth.register("alice@example.com", PASSWORD)
        verification = await auth.send_email_verification(user.id)
        await auth.verify_email(verification.token)

        with pytest.raises(TokenAlreadyUsed):
            await auth.verify_email(verification.token)

    @pytest.mark.asyncio
    async def test_second_token_after_verification(self, auth, storage):
        """Test a second token fails EmailAlreadyVerified and stays unused."""
        user = await auth.register("alice@example.com", PASSWORD)
        first = await auth.send_email_verification(user.id)
        second = await auth.send_email_verification(user.id)
        await auth.verify_email(first.token)

        with pytest.raises(EmailAlreadyVerified):
            await auth.verify_email(second.token)

        record = await storage.get_token(hash_token(second.token), VERIFY)
        assert record.used is False

    @pytest.mark.asyncio
    async def test_concurrent_verification(self, auth, storage):
        """Test exactly one of several concurrent verifications succeeds."""
        user = await auth.register("alice@example.com", PASSWORD)
        verification = await auth.send_email_verification(user.id)

        results = await asyncio.gather(
            *(auth.verify_email(verification.token) for _ in range(3)),
            return_exceptions=True,
        )

        succeeded = [r for r in results if isinstance(r, User)]
        assert len(succeeded) == 1
        assert all(isinstance(r, TokenAlreadyUsed) for r in results if not isinstance(r, User))

        reloaded = await storage.get_user_by_id(user.id)
        assert reloaded.email_verified is True

    @pytest.mark.asyncio
    async def test_invalid_token(self, auth):
        with pytest.raises(InvalidToken):
            await auth.verify_email("0" * 64)

    @pytest.mark.asyncio
    async def test_expired_token(self, auth, storage):
        """Test an expired token fails and leaves the user unverified."""
        user = await auth.register("alice@example.com", PASSWORD)
        verification = await auth.send_email_verification(user.id)

        later = verification.expires_at + timedelta(seconds=1)
        with patch("authkit.services.tokens.utcnow", return_value=later):
            with pytest.raises(TokenExpired):
                await auth.verify_email(verification.token)

        reloaded = await storage.get_user_by_id(user.id)
        assert reloaded.email_verified is False

    @pytest.mark.asyncio
    async def test_token_ttl_from_policy(self, storage, credentials):
        auth = make_auth(storage, credentials, verification_token_ttl=timedelta(hours=1))
        user = await auth.register("alice@example.com", PASSWORD)

        verification = await auth.send_email_verification(user.id)

        record = await storage.get_token(hash_token(verification.token), VERIFY)
        assert record.expires_at - record.created_at == timedelta(hours=1)

    @pytest.mark.asyncio
    async def test_send_failure_keeps_token(self, auth_with_email, email_sender):
        """Test a failed send raises but the issued token stays usable."""
        auth = auth_with_email
        user = await auth.register("alice@example.com", PASSWORD)
        email_sender.send_verification.side_effect = EmailSendFailed()

        with pytest.raises(EmailSendFailed):
            await auth.send_email_verification(user.id)

        token = email_sender.send_verification.call_args[0][1]
        assert (await auth.verify_email(token)).email_verified is True

    @pytest.mark.asyncio
    async def test_unexpected_sender_error_is_wrapped(self, auth_with_email, email_sender):
        auth = auth_with_email
        user = await auth.register("alice@example.com", PASSWORD)
        email_sender.send_verification.side_effect = ConnectionResetError("smtp went away")

        with pytest.raises(EmailSendFailed, match="smtp went away"):
            await auth.send_email_verification(user.id)


class TestResendVerification:
    """Tests for resending verification tokens."""

    @pytest.mark.asyncio
    async def test_resend_keeps_old_tokens(self, auth_with_email, email_sender):
        """Test both the old and the new token stay valid by default."""
        auth = auth_with_email
        user = await auth.register("alice@example.com", PASSWORD)
        first = await auth.send_email_verification(user.id)

        second = await auth.resend_email_verification("Alice@example.com")

        assert second.token != first.token
        assert email_sender.send_verification.await_count == 2
        await auth.verify_email(first.token)
        with pytest.raises(EmailAlreadyVerified):
            await auth.verify_email(second.token)

    @pytest.mark.asyncio
    async def test_resend_invalidates_old_tokens(self, storage, credentials):
        auth = make_auth(storage, credentials, invalidate_tokens_on_resend=True)
        user = await auth.register("alice@example.com", PASSWORD)
        first = await auth.send_email_verification(user.id)

        second = await auth.resend_email_verification("alice@example.com")

        with pytest.raises(InvalidToken):
            await auth.verify_email(first.token)
        assert (await auth.verify_email(second.token)).id == user.id

    @pytest.mark.asyncio
    async def test_resend_unknown_email(self, auth):
        with pytest.raises(UserNotFound):
            await auth.resend_email_verification("nobody@example.com")

    @pytest.mark.asyncio
    async def test_resend_already_verified(self, auth):
        user = await auth.register("alice@example.com", PASSWORD)
        verification = await auth.send_email_verification(user.id)
        await auth.verify_email(verification.token)

        with pytest.raises(EmailAlreadyVerified):
            await auth.resend_email_verification("alice@example.com")


class TestEmailQueueIntegration:
    """Tests for delivery through the background queue."""

    @pytest.mark.asyncio
    async def test_enqueues_when_running(self, storage, credentials, email_sender):
        """Test a running queue takes the send off the request path."""
        queue = EmailQueue(email_sender, retry_min_seconds=0, retry_max_seconds=0)
        auth = Auth(storage, credentials=credentials, email_queue=queue)
        await auth.start_email_worker()
        user = await auth.register("alice@example.com", PASSWORD)

        verification = await auth.send_email_verification(user.id)
        await queue.shutdown()

        assert queue.stats.enqueued == 1
        email_sender.send_verification.assert_awaited_once_with(
            "alice@example.com", verification.token, verification.expires_at
        )

    @pytest.mark.asyncio
    async def test_sends_directly_when_not_running(self, storage, credentials, email_sender):
        """Test an idle queue falls back to a synchronous send."""
        queue = EmailQueue(email_sender)
        auth = Auth(storage, credentials=credentials, email_queue=queue)
        user = await auth.register("alice@example.com", PASSWORD)

        await auth.send_email_verification(user.id)

        assert queue.stats.enqueued == 0
        email_sender.send_verification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_sends_directly_when_full(self, storage, credentials, email_sender):
        """Test a full queue falls back to a synchronous send."""
        queued_sender = AsyncMock(spec=EmailSender)
        queue = EmailQueue(queued_sender, maxsize=1)
        auth = Auth(
            storage, credentials=credentials, email_sender=email_sender, email_queue=queue
        )
        user = await auth.register("alice@example.com", PASSWORD)

        with patch.object(EmailQueue, "running", True), patch.object(
            queue, "enqueue", return_value=False
        ):
            await auth.send_email_verification(user.id)

        email_sender.send_verification.assert_awaited_once()
        queued_sender.send_verification.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_start_worker_requires_queue(self, auth):
        with pytest.raises(ConfigurationError):
            await auth.start_email_worker()


class TestFacadeMaintenance:
    """Tests for cleanup and lifecycle helpers on the facade."""

    @pytest.mark.asyncio
    async def test_cleanup_expired(self, auth, storage):
        await auth.register("alice@example.com", PASSWORD)
        session = await auth.login("alice@example.com", PASSWORD)

        later = session.expires_at + timedelta(seconds=1)
        with patch("authkit.tasks.maintenance.utcnow", return_value=later):
            result = await auth.cleanup_expired()

        assert result["sessions_deleted"] == 1
        assert await storage.get_session(hash_token(session.token)) is None

    @pytest.mark.asyncio
    async def test_expiry_sweeper_runs_until_close(self, memory_storage, credentials):
        """Test the background sweeper uses the policy interval and stops on close."""
        auth = make_auth(memory_storage, credentials, sweep_interval_seconds=0.01)

        sweeper = auth.start_expiry_sweeper()
        assert sweeper.interval_seconds == 0.01
        assert auth.start_expiry_sweeper() is sweeper
        await asyncio.sleep(0.05)
        await auth.close()

        assert sweeper.runs >= 2
        assert sweeper.running is False


class TestFromSettings:
    """Tests for building the facade from settings."""

    def test_memory_backend(self):
        settings = AuthSettings(
            database_url="memory://",
            email_backend="console",
            session_ttl_hours=2,
            require_email_verification=True,
        )

        auth = Auth.from_settings(settings)

        assert isinstance(auth.storage, MemoryStorage)
        assert isinstance(auth.email_sender, VerificationEmailSender)
        assert auth.email_queue is None
        assert auth.policy.session_ttl == timedelta(hours=2)
        assert auth.policy.require_email_verification is True
        assert auth.sessions.default_ttl == timedelta(hours=2)

    def test_sweep_interval(self):
        settings = AuthSettings(database_url="memory://", sweep_interval_seconds=120)

        auth = Auth.from_settings(settings)

        assert auth.policy.sweep_interval_seconds == 120
        assert auth.sweeper is None

    def test_email_queue(self):
        settings = AuthSettings(
            database_url="memory://",
            email_backend="console",
            email_queue_enabled=True,
            email_queue_size=5,
            email_max_attempts=4,
        )

        auth = Auth.from_settings(settings)

        assert auth.email_queue is not None
        assert auth.email_queue.max_attempts == 4

    def test_queue_without_backend(self):
        settings = AuthSettings(database_url="memory://", email_queue_enabled=True)

        with pytest.raises(ConfigurationError):
            Auth.from_settings(settings)

    def test_unsupported_database(self):
        with pytest.raises(ConfigurationError, match="Unsupported database URL"):
            Auth.from_settings(AuthSettings(database_url="mysql://localhost/auth"))

    @pytest.mark.asyncio
    async def test_sqlite_round_trip(self, tmp_path, credentials):
        """Test a facade built from settings works against a SQLite file."""
        settings = AuthSettings(database_url=f"sqlite:///{tmp_path / 'auth.db'}")
        auth = Auth.from_settings(settings)
        auth.credentials = credentials
        await auth.migrate()

        try:
            user = await auth.register("alice@example.com", PASSWORD)
            session = await auth.login("alice@example.com", PASSWORD)
            assert (await auth.verify(session.token)).id == user.id
        finally:
            await auth.close()
