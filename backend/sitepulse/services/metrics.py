"""Metrics aggregator - rolling uptime and smoothed latency per site."""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Check, Site, SiteStatus

logger = logging.getLogger(__name__)


@dataclass
class MetricsUpdate:
    """Values written back onto the site by one refresh."""
    uptime: float
    average_latency: int
    total_checks: int
    successful_checks: int


def clamp_uptime(value: float) -> float:
    return min(100.0, max(0.0, value))


def compute_uptime(total: int, successful: int, current_status: str) -> float:
    """Uptime percent over a window of ``total`` checks.

    With no history the just observed status decides: 100 when ONLINE,
    0 otherwise, so brand new sites are not penalized.
    """
    if total <= 0:
        return 100.0 if current_status == SiteStatus.ONLINE else 0.0
    return clamp_uptime(round(successful / total * 100, 2))


def smooth_latency(
    previous: Optional[float],
    latest: float,
    factor: Optional[float] = None,
) -> float:
    """Exponentially smoothed latency: previous * (1 - f) + latest * f.

    Computed in decimal arithmetic so 100 -> 300 gives exactly 140.
    The first observation seeds the average.
    """
    if previous is None:
        return float(latest)
    if factor is None:
        factor = settings.latency_smoothing_factor
    f = Decimal(str(factor))
    value = Decimal(str(previous)) * (1 - f) + Decimal(str(latest)) * f
    return float(value)


def round_latency(value: float) -> int:
    """Round half up to whole milliseconds, never negative."""
    rounded = Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, int(rounded))


class MetricsService:
    """Recomputes a site's uptime and latency after each verdict."""

    def __init__(self, window_days: Optional[int] = None, smoothing_factor: Optional[float] = None):
        self.window_days = window_days if window_days is not None else settings.uptime_window_days
        self.smoothing_factor = (
            smoothing_factor if smoothing_factor is not None else settings.latency_smoothing_factor
        )

    async def count_window(self, session: AsyncSession, site_id: int, now: datetime) -> tuple[int, int]:
        """(total, successful) primary checks inside the trailing window."""
        window_start = now - timedelta(days=self.window_days)
        result = await session.execute(
            select(
                func.count(Check.id),
                func.count(case((Check.status == SiteStatus.ONLINE.value, 1))),
            ).where(
                Check.site_id == site_id,
                Check.checked_at >= window_start,
                Check.region.is_(None),
            )
        )
        total, successful = result.one()
        return int(total or 0), int(successful or 0)

    async def refresh(
        self,
        session: AsyncSession,
        site: Site,
        status: str,
        latency_ms: int,
        now: datetime,
    ) -> MetricsUpdate:
        """Write uptime, smoothed latency, status and last check time.

        Must run before the new check row is added so an empty window
        falls back to the observed status.
        """
        total, successful = await self.count_window(session, site.id, now)
        uptime = compute_uptime(total, successful, status)
        average = round_latency(
            smooth_latency(site.average_latency, max(0, latency_ms), self.smoothing_factor)
        )

        site.status = SiteStatus(status).value
        site.uptime = uptime
        site.average_latency = average
        site.last_checked_at = now

        logger.debug(f"Site {site.id}: uptime={uptime}% over {total} checks, avg latency={average}ms")
        return MetricsUpdate(
            uptime=uptime,
            average_latency=average,
            total_checks=total,
            successful_checks=successful,
        )


# Global instance
metrics_service = MetricsService()
