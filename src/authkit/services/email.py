"""Email delivery for verification tokens."""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from urllib.parse import urlencode

import aiosmtplib
import httpx

from authkit.config import AuthSettings
from authkit.errors import ConfigurationError, EmailSendFailed

logger = logging.getLogger(__name__)


class EmailSender(ABC):
    """Capability the facade calls after issuing a verification token.

    Implementations raise ``EmailSendFailed`` when delivery fails.
    """

    @abstractmethod
    async def send_verification(self, email: str, token: str, expires_at: datetime) -> None:
        """Deliver a verification token to ``email``."""


class EmailBackend(ABC):
    """Abstract base class for email transports."""

    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
    ) -> bool:
        """Send an email.

        Args:
            to: Recipient email address
            subject: Email subject
            html: HTML content
            text: Plain text content (optional)

        Returns:
            True if sent successfully
        """


class ConsoleEmailBackend(EmailBackend):
    """Email backend that logs to console (for development)."""

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
    ) -> bool:
        """Log email to console instead of sending."""
        logger.info(
            f"\n{'='*60}\n"
            f"EMAIL (console backend - not sent)\n"
            f"{'='*60}\n"
            f"To: {to}\n"
            f"Subject: {subject}\n"
            f"{'='*60}\n"
            f"{text or html}\n"
            f"{'='*60}\n"
        )
        return True


class SMTPEmailBackend(EmailBackend):
    """Email backend using SMTP."""

    def __init__(
        self,
        host: str,
        port: int,
        username: str,
        password: str,
        use_tls: bool = True,
        from_address: str = "",
    ):
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
    ) -> bool:
        """Send email via SMTP."""
        message = MIMEMultipart("alternative")
        message["From"] = self.from_address
        message["To"] = to
        message["Subject"] = subject

        if text:
            message.attach(MIMEText(text, "plain"))
        message.attach(MIMEText(html, "html"))

        try:
            await aiosmtplib.send(
                message,
                hostname=self.host,
                port=self.port,
                username=self.username or None,
                password=self.password or None,
                start_tls=self.use_tls,
            )
            logger.info(f"Email sent via SMTP to {to}")
            return True
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email via SMTP to {to}: {e}")
            return False


class ResendEmailBackend(EmailBackend):
    """Email backend using Resend API."""

    def __init__(self, api_key: str, from_address: str):
        self.api_key = api_key
        self.from_address = from_address

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
        text: str | None = None,
    ) -> bool:
        """Send email via Resend API."""
        async with httpx.AsyncClient() as client:
            try:
                response = await client.post(
                    "https://api.resend.com/emails",
                    headers={
                        "Authorization": f"Bearer {self.api_key}",
                        "Content-Type": "application/json",
                    },
                    json={
                        "from": self.from_address,
                        "to": [to],
                        "subject": subject,
                        "html": html,
                        "text": text,
                    },
                    timeout=30.0,
                )
                response.raise_for_status()
                logger.info(f"Email sent via Resend to {to}")
                return True
            except httpx.HTTPStatusError as e:
                logger.error(f"Resend API error: {e.response.status_code} - {e.response.text}")
                return False
            except httpx.HTTPError as e:
                logger.error(f"Failed to send email via Resend to {to}: {e}")
                return False


def get_email_backend(settings: AuthSettings) -> EmailBackend | None:
    """Get the configured email backend, or None when sending is disabled."""
    if settings.email_backend == "none":
        return None
    elif settings.email_backend == "console":
        return ConsoleEmailBackend()
    elif settings.email_backend == "smtp":
        return SMTPEmailBackend(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.email_from,
        )
    elif settings.email_backend == "resend":
        return ResendEmailBackend(
            api_key=settings.resend_api_key,
            from_address=settings.email_from,
        )
    else:
        raise ConfigurationError(f"Unknown email backend: {settings.email_backend}")


def build_verification_link(app_url: str, token: str) -> str:
    """URL the user opens to verify their email."""
    return f"{app_url.rstrip('/')}/auth/verify-email?{urlencode({'token': token})}"


class VerificationEmailSender(EmailSender):
    """Composes the verification email and hands it to a backend."""

    def __init__(self, backend: EmailBackend, app_url: str, product_name: str = "AuthKit"):
        self.backend = backend
        self.app_url = app_url.rstrip("/")
        self.product_name = product_name

    def verification_link(self, token: str) -> str:
        return build_verification_link(self.app_url, token)

    async def send_verification(self, email: str, token: str, expires_at: datetime) -> None:
        link = self.verification_link(token)
        expires = expires_at.strftime("%Y-%m-%d %H:%M UTC")
        subject = f"Verify your email for {self.product_name}"

        html = f"""
<!DOCTYPE html>
<html>
<body style="font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; max-width: 600px; margin: 0 auto; padding: 20px;">
    <h2 style="color: #1a1a1a;">Confirm your email address</h2>
    <p>Click the button below to verify your email. This link expires at {expires}.</p>
    <div style="text-align: center; margin: 30px 0;">
        <a href="{link}"
           style="background: #2563eb; color: white; padding: 12px 30px; border-radius: 6px; text-decoration: none; font-weight: 500; display: inline-block;">
            Verify email
        </a>
    </div>
    <p style="color: #666; font-size: 14px;">
        If you didn't create an account, you can safely ignore this email.
    </p>
    <p style="color: #666; font-size: 12px;">
        If the button doesn't work, copy and paste this link into your browser:<br>
        <a href="{link}" style="color: #2563eb; word-break: break-all;">{link}</a>
    </p>
</body>
</html>
"""

        text = f"""
Confirm your email address
==========================

Open the link below to verify your email.
This link expires at {expires}.

{link}

If you didn't create an account, you can safely ignore this email.
"""

        sent = await self.backend.send(to=email, subject=subject, html=html, text=text)
        if not sent:
            raise EmailSendFailed(f"Could not deliver verification email to {email}")


def get_email_sender(settings: AuthSettings) -> EmailSender | None:
    """Build the verification sender for the configured backend."""
    backend = get_email_backend(settings)
    if backend is None:
        return None
    return VerificationEmailSender(backend, app_url=settings.app_url)
