"""Maintenance tasks for expired sessions and tokens.

Expiry is always re-checked at read time, so these sweeps only reclaim
space; nothing depends on them having run.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from authkit.models import utcnow
from authkit.services.sessions import SessionManager
from authkit.services.tokens import TokenManager
from authkit.storage import StorageGateway

logger = logging.getLogger(__name__)

# Default interval between periodic sweeps (1 hour)
DEFAULT_SWEEP_INTERVAL_SECONDS = 60 * 60


async def cleanup_expired(db: StorageGateway, now: datetime | None = None) -> dict[str, Any]:
    """Delete every session and token whose ``expires_at`` has passed.

    Args:
        db: Storage gateway
        now: Cutoff time (defaults to the current time)

    Returns:
        Dict with cleanup results
    """
    cutoff = now or utcnow()

    sessions_deleted = await SessionManager().delete_expired(db, cutoff)
    tokens_deleted = await TokenManager().delete_expired(db, cutoff)

    logger.info(
        f"Expiry cleanup complete: {sessions_deleted} sessions, "
        f"{tokens_deleted} tokens deleted"
    )

    return {
        "cutoff": cutoff.isoformat(),
        "sessions_deleted": sessions_deleted,
        "tokens_deleted": tokens_deleted,
    }


class ExpirySweeper:
    """Runs ``cleanup_expired`` periodically in a background task.

    A failed sweep is logged and retried at the next interval.
    """

    def __init__(
        self,
        db: StorageGateway,
        interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.db = db
        self.interval_seconds = interval_seconds
        self.runs = 0
        self.last_result: dict[str, Any] | None = None
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="authkit-expiry-sweeper")
        logger.info(f"Expiry sweeper started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Expiry sweeper stopped")

    async def _loop(self) -> None:
        while True:
            try:
                self.last_result = await cleanup_expired(self.db)
            except Exception:
                logger.exception("Expiry sweep failed")
            self.runs += 1
            await asyncio.sleep(self.interval_seconds)
