"""Scheduler service - runs due site checks and prunes old history.

Design:
- One tick job every few seconds selects enabled sites whose last check is
  older than their interval (sites in MAINTENANCE are skipped)
- Each due site is checked in its own session; a semaphore caps how many
  cycles run at once
- A failure in one site's cycle is logged and never stops the others
- An hourly job deletes check, SSL and DNS history past retention
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import select, delete

from ..config import settings
from ..database import async_session
from ..models import Check, DnsCheck, Site, SiteStatus, SslCheck
from ..utils.db_utils import retry_on_lock
from ..utils.time import utcnow
from .monitor import MonitorService, monitor_service

logger = logging.getLogger(__name__)


def is_site_due(check_interval: Optional[int], last_checked_at: Optional[datetime], now: datetime) -> bool:
    """Whether a site's interval has elapsed since its last check.

    Never-checked sites are due immediately. Half a tick of slack keeps a
    site from slipping a whole tick late.
    """
    if last_checked_at is None:
        return True
    interval = check_interval or 60
    elapsed = (now - last_checked_at).total_seconds()
    return elapsed >= interval - settings.scheduler_tick_seconds / 2


class SchedulerService:
    """Service for scheduling periodic site checks."""

    def __init__(self, monitor: Optional[MonitorService] = None, session_factory=None):
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self.monitor = monitor or monitor_service
        self._session_factory = session_factory or async_session

    def start(self):
        """Start the scheduler."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler()

        self.scheduler.add_job(
            self._tick,
            trigger=IntervalTrigger(seconds=settings.scheduler_tick_seconds),
            id="run_checks",
            replace_existing=True,
            max_instances=1,
            misfire_grace_time=settings.scheduler_tick_seconds,
        )

        self.scheduler.add_job(
            self._cleanup_old_records,
            trigger=IntervalTrigger(hours=1),
            id="cleanup_old_records",
            replace_existing=True,
            max_instances=1,
        )

        self.scheduler.start()
        self._running = True
        logger.info(
            f"Scheduler started (tick={settings.scheduler_tick_seconds}s, "
            f"max_concurrent={settings.max_concurrent_checks})"
        )

    def stop(self):
        """Stop the scheduler."""
        if self.scheduler and self._running:
            self.scheduler.shutdown(wait=False)
            self._running = False
            logger.info("Scheduler stopped")

    async def _tick(self):
        try:
            await self.run_due_checks()
        except Exception as e:
            logger.error(f"Error running checks: {e}")

    async def due_site_ids(self, now: Optional[datetime] = None) -> list[int]:
        now = now or utcnow()
        async with self._session_factory() as session:
            result = await session.execute(
                select(Site.id, Site.check_interval, Site.last_checked_at).where(
                    Site.enabled.is_(True),
                    Site.status != SiteStatus.MAINTENANCE.value,
                )
            )
            rows = result.fetchall()
        return [site_id for site_id, interval, last in rows if is_site_due(interval, last, now)]

    async def run_due_checks(self, now: Optional[datetime] = None) -> dict:
        """Check every due site; returns counts of checked and failed sites."""
        due = await self.due_site_ids(now)
        if not due:
            return {"checked": 0, "failed": 0}

        logger.debug(f"Checking {len(due)} due sites")
        semaphore = asyncio.Semaphore(settings.max_concurrent_checks)

        async def check_with_limit(site_id: int) -> bool:
            async with semaphore:
                return await self._check_single_site(site_id)

        outcomes = await asyncio.gather(*[check_with_limit(site_id) for site_id in due])
        failed = sum(1 for ok in outcomes if not ok)
        return {"checked": len(due) - failed, "failed": failed}

    async def _check_single_site(self, site_id: int) -> bool:
        """Run one site's cycle in its own session."""
        try:
            async with self._session_factory() as session:
                site = await session.get(Site, site_id)
                if site is None:
                    return False
                await self.monitor.check_site(session, site)
            return True
        except Exception as e:
            logger.error(f"Error checking site {site_id}: {e}")
            return False

    async def _cleanup_old_records(self):
        """Delete history rows older than the retention window."""
        try:
            cutoff = utcnow() - timedelta(days=settings.check_retention_days)

            async with self._session_factory() as session:
                await session.execute(delete(Check).where(Check.checked_at < cutoff))
                await session.execute(delete(SslCheck).where(SslCheck.checked_at < cutoff))
                await session.execute(delete(DnsCheck).where(DnsCheck.checked_at < cutoff))
                await retry_on_lock(session.commit)
                logger.info("Cleaned up old check history")
        except Exception as e:
            logger.error(f"Error cleaning up records: {e}")


# Global instance
scheduler_service = SchedulerService()
