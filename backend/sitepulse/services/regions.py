"""Region orchestrator - concurrent probes from several vantage points.

Each selected region is probed in its own task with its own timeout; a
failing region never cancels its siblings. Results are reconciled into one
verdict by ``summarize_regions``:

- no region reachable                      -> OFFLINE
- more than ``offline_fraction`` failing   -> OFFLINE
- any failing or DEGRADED region           -> DEGRADED
- otherwise                                -> ONLINE
"""
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional, Sequence

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Check, SiteStatus
from ..utils.time import utcnow
from .probe import ProbeService, probe_service

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegionInfo:
    """A vantage point in the region registry."""
    id: str
    name: str
    location: str
    latitude: float
    longitude: float


REGIONS = {
    r.id: r
    for r in (
        RegionInfo("US_EAST", "US East", "Virginia, USA", 38.9, -77.0),
        RegionInfo("US_WEST", "US West", "California, USA", 37.4, -122.1),
        RegionInfo("EU_WEST", "EU West", "Dublin, Ireland", 53.3, -6.3),
        RegionInfo("EU_CENTRAL", "EU Central", "Frankfurt, Germany", 50.1, 8.7),
        RegionInfo("ASIA_EAST", "Asia East", "Tokyo, Japan", 35.7, 139.7),
        RegionInfo("ASIA_SOUTHEAST", "Asia Southeast", "Singapore", 1.35, 103.8),
        RegionInfo("AUSTRALIA", "Australia", "Sydney, Australia", -33.9, 151.2),
        RegionInfo("SOUTH_AMERICA", "South America", "Sao Paulo, Brazil", -23.5, -46.6),
    )
}

DEFAULT_REGIONS = ["US_EAST", "EU_WEST", "ASIA_EAST"]


def default_regions() -> List[str]:
    """Configured default regions, filtered against the registry."""
    configured = [r for r in settings.default_regions if r in REGIONS]
    return configured or list(DEFAULT_REGIONS)


def resolve_regions(
    requested: Optional[Iterable[str]],
    fallback: Optional[Iterable[str]] = None,
) -> List[str]:
    """Keep known regions in request order; fall back when none survive."""
    valid: List[str] = []
    for region in requested or []:
        region = str(region or "").strip().upper()
        if region in REGIONS and region not in valid:
            valid.append(region)
    if valid:
        return valid
    if fallback is not None:
        fallback_valid = [r for r in fallback if r in REGIONS]
        if fallback_valid:
            return fallback_valid
    return default_regions()


@dataclass
class RegionCheckResult:
    """One region's outcome within an orchestration run."""
    region: str
    success: bool
    status: SiteStatus
    latency_ms: int = 0
    status_code: Optional[int] = None
    error: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)


@dataclass
class RegionStat:
    region: str
    response_time: int
    name: str
    location: str


@dataclass
class RegionSummary:
    """Reconciled view over one orchestration run."""
    average_response_time: int
    fastest_region: Optional[RegionStat]
    slowest_region: Optional[RegionStat]
    overall_status: SiteStatus
    regions_checked: int
    successful_checks: int


def _region_stat(result: RegionCheckResult) -> RegionStat:
    info = REGIONS.get(result.region)
    return RegionStat(
        region=result.region,
        response_time=result.latency_ms,
        name=info.name if info else result.region,
        location=info.location if info else "",
    )


def overall_status(
    results: Sequence[RegionCheckResult],
    offline_fraction: Optional[float] = None,
) -> SiteStatus:
    if offline_fraction is None:
        offline_fraction = settings.region_offline_fraction

    total = len(results)
    failed = sum(1 for r in results if not r.success)
    if total == 0 or failed == total:
        return SiteStatus.OFFLINE
    if failed > total * offline_fraction:
        return SiteStatus.OFFLINE
    if failed > 0 or any(r.status == SiteStatus.DEGRADED for r in results):
        return SiteStatus.DEGRADED
    return SiteStatus.ONLINE


def summarize_regions(
    results: Sequence[RegionCheckResult],
    offline_fraction: Optional[float] = None,
) -> RegionSummary:
    """Average, fastest and slowest over successful regions, plus verdict."""
    successful = [r for r in results if r.success]

    average = 0
    fastest = slowest = None
    if successful:
        average = round(sum(r.latency_ms for r in successful) / len(successful))
        fastest = _region_stat(min(successful, key=lambda r: r.latency_ms))
        slowest = _region_stat(max(successful, key=lambda r: r.latency_ms))

    return RegionSummary(
        average_response_time=int(average),
        fastest_region=fastest,
        slowest_region=slowest,
        overall_status=overall_status(results, offline_fraction),
        regions_checked=len(results),
        successful_checks=len(successful),
    )


@dataclass
class CheckSession:
    """Region checks issued together, grouped at read time."""
    timestamp: datetime
    checks: list


def group_checks_by_session(checks: Sequence, window_seconds: Optional[int] = None) -> List[CheckSession]:
    """Group rows (newest first) whose timestamps are within the window of
    the session's first row."""
    if window_seconds is None:
        window_seconds = settings.region_session_window_seconds
    window = timedelta(seconds=window_seconds)

    sessions: List[CheckSession] = []
    current: Optional[CheckSession] = None
    for check in checks:
        if current is not None and abs(current.timestamp - check.checked_at) < window:
            current.checks.append(check)
            continue
        current = CheckSession(timestamp=check.checked_at, checks=[check])
        sessions.append(current)
    return sessions


class RegionOrchestrator:
    """Fans a probe out across regions and records the results."""

    def __init__(
        self,
        probe: Optional[ProbeService] = None,
        timeout: Optional[float] = None,
        worker_url: Optional[str] = None,
        worker_secret: Optional[str] = None,
        worker_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.probe = probe or probe_service
        self.timeout = timeout if timeout is not None else settings.check_timeout_seconds
        self.worker_url = worker_url if worker_url is not None else settings.region_worker_url
        self.worker_secret = worker_secret if worker_secret is not None else settings.region_worker_secret
        self._worker_transport = worker_transport
        # Worker share of a region's budget; the local fallback keeps the full timeout
        self.worker_timeout = self.timeout / 2

    @property
    def budget(self) -> float:
        """Upper bound for one region, worker attempt included."""
        if self.worker_url:
            return self.worker_timeout + self.timeout
        return self.timeout

    async def _probe_via_worker(self, url: str, region: str) -> RegionCheckResult:
        """Ask the remote probe worker for a check from ``region``."""
        headers = {"Content-Type": "application/json"}
        if self.worker_secret:
            headers["X-SitePulse-API-Key"] = self.worker_secret
        async with httpx.AsyncClient(timeout=self.worker_timeout, transport=self._worker_transport) as client:
            response = await client.post(
                self.worker_url,
                json={"url": url, "region": region, "timeout": int(self.worker_timeout * 1000)},
                headers=headers,
            )
            response.raise_for_status()
            data = response.json()

        check = data.get("check") or {}
        status = SiteStatus(check.get("status") or SiteStatus.OFFLINE.value)
        return RegionCheckResult(
            region=region,
            success=bool(check.get("success", status != SiteStatus.OFFLINE)) and status != SiteStatus.OFFLINE,
            status=status,
            latency_ms=int(check.get("responseTime") or 0),
            status_code=check.get("statusCode"),
            error=check.get("errorMessage"),
        )

    async def _probe_region(self, url: str, region: str) -> RegionCheckResult:
        if self.worker_url:
            try:
                return await asyncio.wait_for(
                    self._probe_via_worker(url, region),
                    timeout=self.worker_timeout,
                )
            except Exception as e:
                logger.warning(f"Region worker failed for {region}, probing locally: {type(e).__name__} {e}")

        result = await self.probe.probe(url, timeout=self.timeout, region=region)
        return RegionCheckResult(
            region=region,
            success=result.reachable,
            status=result.status,
            latency_ms=result.latency_ms,
            status_code=result.status_code,
            error=result.error,
            checked_at=result.checked_at,
        )

    async def _run_one(self, url: str, region: str) -> RegionCheckResult:
        try:
            return await asyncio.wait_for(self._probe_region(url, region), timeout=self.budget)
        except asyncio.TimeoutError:
            logger.warning(f"Region check timed out for {region}: {url}")
            return RegionCheckResult(
                region=region,
                success=False,
                status=SiteStatus.OFFLINE,
                latency_ms=int(self.budget * 1000),
                error="Region check timed out",
            )
        except Exception as e:
            logger.warning(f"Region check failed for {region}: {e}")
            return RegionCheckResult(
                region=region,
                success=False,
                status=SiteStatus.OFFLINE,
                error=str(e) or type(e).__name__,
            )

    async def check(self, url: str, regions: Sequence[str]) -> List[RegionCheckResult]:
        """Probe ``url`` from every region concurrently; one result per region."""
        return list(await asyncio.gather(*[self._run_one(url, r) for r in regions]))

    def record(
        self,
        session: AsyncSession,
        site_id: int,
        results: Sequence[RegionCheckResult],
        checked_at: datetime,
    ) -> List[Check]:
        """Stage one region-tagged Check row per result, sharing one timestamp."""
        rows = [
            Check(
                site_id=site_id,
                region=r.region,
                status=SiteStatus(r.status).value,
                response_time=r.latency_ms,
                status_code=r.status_code,
                error_message=r.error,
                checked_at=checked_at,
            )
            for r in results
        ]
        session.add_all(rows)
        return rows


# Global instance
region_orchestrator = RegionOrchestrator()
