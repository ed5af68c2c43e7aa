"""Background loops that refresh due feeds and purge expired sessions."""

import asyncio
import logging

from rssfeed_server.config import Settings
from rssfeed_server.database import Database
from rssfeed_server.models import utcnow
from rssfeed_server.refresh import SweepResult, refresh_due_feeds

logger = logging.getLogger(__name__)


class FeedScheduler:
    """Owns the periodic sweep and session cleanup tasks.

    Sweeps never overlap: a tick that arrives while one is still running is
    skipped. run_sweep() doubles as the manual "refresh all" trigger.
    """

    def __init__(self, db: Database, settings: Settings):
        self.db = db
        self.settings = settings
        self._sweep_loop: asyncio.Task | None = None
        self._cleanup_loop: asyncio.Task | None = None
        self._sweep_task: asyncio.Task | None = None
        self._sweeping = False

    @property
    def running(self) -> bool:
        return self._sweep_loop is not None

    @property
    def sweep_in_progress(self) -> bool:
        return self._sweeping

    async def start(self) -> None:
        if self.running:
            return
        self._sweep_loop = asyncio.create_task(self._run_sweep_loop())
        self._cleanup_loop = asyncio.create_task(self._run_cleanup_loop())
        logger.info(
            "Scheduler started (sweep every %d min, session cleanup every %d min)",
            self.settings.sweep_interval_minutes,
            self.settings.session_cleanup_interval_minutes,
        )

    async def stop(self) -> None:
        """Cancel both loops and wait for an in-flight sweep to finish."""
        for task in (self._sweep_loop, self._cleanup_loop):
            if task is not None:
                task.cancel()
        for task in (self._sweep_loop, self._cleanup_loop):
            if task is not None:
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._sweep_loop = None
        self._cleanup_loop = None

        if self._sweep_task is not None:
            # The worker thread cannot be interrupted; let it finish.
            await asyncio.gather(self._sweep_task, return_exceptions=True)
            self._sweep_task = None
        logger.info("Scheduler stopped")

    async def run_sweep(self) -> SweepResult | None:
        """Refresh one batch of due feeds, or return None if a sweep is running."""
        if self._sweeping:
            logger.info("Sweep already in progress, skipping")
            return None
        self._sweeping = True
        try:
            return await asyncio.to_thread(refresh_due_feeds, self.db, self.settings)
        finally:
            self._sweeping = False

    async def cleanup_sessions(self) -> int:
        removed = await asyncio.to_thread(self.db.delete_expired_sessions, utcnow())
        if removed:
            logger.info("Removed %d expired sessions", removed)
        return removed

    def _spawn_sweep(self) -> None:
        if self._sweeping or (self._sweep_task and not self._sweep_task.done()):
            logger.info("Previous sweep still running, skipping this tick")
            return
        self._sweep_task = asyncio.create_task(self._guarded_sweep())

    async def _guarded_sweep(self) -> None:
        try:
            await self.run_sweep()
        except Exception as e:
            logger.error("Sweep failed: %s", e)

    async def _run_sweep_loop(self) -> None:
        interval = self.settings.sweep_interval_minutes * 60
        while True:
            self._spawn_sweep()
            await asyncio.sleep(interval)

    async def _run_cleanup_loop(self) -> None:
        interval = self.settings.session_cleanup_interval_minutes * 60
        while True:
            try:
                await self.cleanup_sessions()
            except Exception as e:
                logger.error("Session cleanup failed: %s", e)
            await asyncio.sleep(interval)
