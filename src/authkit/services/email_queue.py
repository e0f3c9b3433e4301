"""Background email queue.

Moves email delivery off the request path: the facade enqueues a job and
returns immediately, a worker task delivers it with exponential-backoff
retries.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from tenacity import (
    AsyncRetrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from authkit.errors import EmailSendFailed
from authkit.models import utcnow
from authkit.services.email import EmailSender

logger = logging.getLogger(__name__)


class EmailJobType(str, Enum):
    """Kind of email a job delivers."""

    EMAIL_VERIFICATION = "email_verification"


@dataclass
class EmailJob:
    job_type: EmailJobType
    recipient: str
    token: str
    token_expires_at: datetime
    user_id: str
    created_at: datetime = field(default_factory=utcnow)

    @classmethod
    def verification(
        cls, recipient: str, token: str, token_expires_at: datetime, user_id: str
    ) -> "EmailJob":
        return cls(
            job_type=EmailJobType.EMAIL_VERIFICATION,
            recipient=recipient,
            token=token,
            token_expires_at=token_expires_at,
            user_id=user_id,
        )


@dataclass
class EmailQueueStats:
    enqueued: int = 0
    sent: int = 0
    failed: int = 0


class EmailQueue:
    """Bounded in-process queue with a single delivery worker.

    Usage:
        queue = EmailQueue(sender)
        await queue.start()
        queue.enqueue(EmailJob.verification(...))
        ...
        await queue.shutdown()
    """

    def __init__(
        self,
        sender: EmailSender,
        *,
        maxsize: int = 100,
        max_attempts: int = 2,
        retry_min_seconds: float = 1.0,
        retry_max_seconds: float = 60.0,
    ) -> None:
        self.sender = sender
        self.max_attempts = max_attempts
        self.retry_min_seconds = retry_min_seconds
        self.retry_max_seconds = retry_max_seconds
        self.stats = EmailQueueStats()
        self._queue: asyncio.Queue[EmailJob] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def enqueue(self, job: EmailJob) -> bool:
        """Queue a job without waiting. Returns False when the queue is full."""
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            logger.warning(f"Email queue full, rejecting {job.job_type.value} job")
            return False
        self.stats.enqueued += 1
        return True

    async def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.create_task(self._run(), name="authkit-email-worker")
        logger.info("Email worker started")

    async def shutdown(self, drain: bool = True) -> None:
        """Stop the worker, by default after delivering everything queued."""
        if self._worker is None:
            return
        if drain:
            await self._queue.join()
        self._worker.cancel()
        try:
            await self._worker
        except asyncio.CancelledError:
            pass
        self._worker = None
        logger.info(f"Email worker stopped (sent={self.stats.sent}, failed={self.stats.failed})")

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self._deliver(job)
            except Exception:
                self.stats.failed += 1
                logger.exception(f"Unexpected error delivering email for user {job.user_id}")
            finally:
                self._queue.task_done()

    async def _deliver(self, job: EmailJob) -> None:
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=wait_exponential(
                    multiplier=self.retry_min_seconds,
                    min=self.retry_min_seconds,
                    max=self.retry_max_seconds,
                ),
                retry=retry_if_exception_type((EmailSendFailed, OSError)),
                reraise=True,
            ):
                with attempt:
                    await self.sender.send_verification(
                        job.recipient, job.token, job.token_expires_at
                    )
        except (EmailSendFailed, OSError) as e:
            self.stats.failed += 1
            logger.error(
                f"Dropping {job.job_type.value} email for user {job.user_id} "
                f"after {self.max_attempts} attempts: {e}"
            )
            return

        self.stats.sent += 1
        logger.debug(f"Delivered {job.job_type.value} email for user {job.user_id}")
