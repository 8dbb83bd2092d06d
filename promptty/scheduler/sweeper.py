"""Periodic removal of expired sessions.

Wraps APScheduler's AsyncIOScheduler with a single interval job that
calls ``SessionManager.expire_sweep``. Runs are never concurrent and
missed runs collapse into one.
"""

from datetime import timezone
from typing import Optional

import structlog
from apscheduler.schedulers.asyncio import (
    AsyncIOScheduler,  # type: ignore[import-untyped]
)
from apscheduler.triggers.interval import IntervalTrigger  # type: ignore[import-untyped]

from ..routing.session_manager import SessionManager
from ..utils.constants import DEFAULT_SWEEP_INTERVAL_SECONDS

logger = structlog.get_logger()

SWEEP_JOB_ID = "session-sweep"


class SessionSweeper:
    """Interval job that deletes expired sessions."""

    def __init__(
        self,
        session_manager: SessionManager,
        interval_seconds: int = DEFAULT_SWEEP_INTERVAL_SECONDS,
    ) -> None:
        self.session_manager = session_manager
        self.interval_seconds = interval_seconds
        self._scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.last_removed: Optional[int] = None

    # ── Lifecycle ─────────────────────────────────────────────────

    async def start(self) -> None:
        """Sweep once now, then on every interval."""
        await self.sweep()
        self._scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self.interval_seconds, timezone=timezone.utc),
            id=SWEEP_JOB_ID,
            name="Expired session sweep",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("Session sweeper started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.info("Session sweeper stopped")

    # ── Job ───────────────────────────────────────────────────────

    async def sweep(self) -> int:
        """Run one sweep; failures are logged and the next run retries."""
        try:
            removed = await self.session_manager.expire_sweep()
        except Exception as e:
            logger.error("Error during session cleanup", error=str(e))
            return 0
        self.last_removed = removed
        return removed
