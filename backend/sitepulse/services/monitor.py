"""Monitor service - the per-site check cycle.

One cycle: probe (single or multi-region) -> verdict -> metrics, check row
and site status committed -> incident transition committed -> events.
Cycles for the same site are serialized by a per-site lock; the partial
unique index on open incidents backs this up across processes.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Check, Incident, IncidentStatus, Site, SiteStatus
from ..utils.db_utils import retry_on_lock
from ..utils.time import Clock, utcnow
from .dns_tracker import DnsMonitor, dns_monitor
from .events import IncidentEvent, StatusVerdictEvent
from .incidents import (
    IncidentAction,
    IncidentChange,
    IncidentNotFound,
    IncidentPersistenceError,
    IncidentService,
    Transition,
    decide_transition,
    incident_payload,
    incident_service,
)
from .metrics import MetricsService, MetricsUpdate, metrics_service
from .probe import ProbeResult, ProbeService, probe_service
from .regions import (
    RegionCheckResult,
    RegionOrchestrator,
    RegionSummary,
    region_orchestrator,
    resolve_regions,
    summarize_regions,
)
from .ssl_tracker import CertificateTracker, certificate_tracker
from .tls_inspector import host_port_from_url

logger = logging.getLogger(__name__)


@dataclass
class VerdictOutcome:
    """Everything one verdict changed."""
    site_id: int
    previous_status: Optional[str]
    new_status: SiteStatus
    transition: Transition
    metrics: MetricsUpdate
    check: Check
    incident: Optional[IncidentChange] = None


@dataclass
class CycleOutcome:
    probe: ProbeResult
    verdict: VerdictOutcome


@dataclass
class RegionRunOutcome:
    checked_at: datetime
    results: list[RegionCheckResult]
    summary: RegionSummary
    checks: list[Check] = field(default_factory=list)
    verdict: Optional[VerdictOutcome] = None


class MonitorService:
    """Runs check cycles and drives the incident state machine."""

    def __init__(
        self,
        probe: Optional[ProbeService] = None,
        orchestrator: Optional[RegionOrchestrator] = None,
        metrics: Optional[MetricsService] = None,
        incidents: Optional[IncidentService] = None,
        certificates: Optional[CertificateTracker] = None,
        dns: Optional[DnsMonitor] = None,
        notifier=None,
        clock: Clock = utcnow,
    ):
        self.probe = probe or probe_service
        self.orchestrator = orchestrator or region_orchestrator
        self.metrics = metrics or metrics_service
        self.incidents = incidents or incident_service
        self.certificates = certificates or certificate_tracker
        self.dns = dns or dns_monitor
        self._notifier = notifier
        self.clock = clock
        self._locks: dict[int, asyncio.Lock] = {}
        self._lock_users: dict[int, int] = {}

    @property
    def notifier(self):
        if self._notifier is None:
            from .notifier import notifier
            return notifier
        return self._notifier

    @asynccontextmanager
    async def _site_lock(self, site_id: int):
        """Serialize cycles for one site; the entry is dropped once unused."""
        lock = self._locks.get(site_id)
        if lock is None:
            lock = self._locks[site_id] = asyncio.Lock()
        self._lock_users[site_id] = self._lock_users.get(site_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[site_id] -= 1
            if self._lock_users[site_id] == 0:
                del self._lock_users[site_id]
                del self._locks[site_id]

    async def check_site(self, session: AsyncSession, site: Site, run_trackers: bool = True) -> CycleOutcome:
        """Probe a site once and apply the verdict."""
        result = await self.probe.probe(site.url)
        verdict = await self.apply_verdict(
            session,
            site,
            result.status,
            result.latency_ms,
            status_code=result.status_code,
            error=result.error,
        )
        if run_trackers:
            await self.run_trackers(session, site)
        return CycleOutcome(probe=result, verdict=verdict)

    async def apply_verdict(
        self,
        session: AsyncSession,
        site: Site,
        status: str,
        latency_ms: int,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> VerdictOutcome:
        """Commit a verdict for ``site`` and move its incident along.

        The check row, site status and metrics land in a first commit. The
        incident write follows in a second one; if it cannot be persisted
        the status stays committed and ``IncidentPersistenceError`` is
        raised.
        """
        status = SiteStatus(status)
        site_id = site.id

        async with self._site_lock(site_id):
            now = now or self.clock()
            # Another session may have moved the site since it was loaded
            await session.refresh(site)
            previous_status = site.status
            organization_id = site.organization_id
            site_name = site.name

            metrics = await self.metrics.refresh(session, site, status, latency_ms, now)
            check = Check(
                site_id=site_id,
                status=status.value,
                response_time=max(0, latency_ms),
                status_code=status_code,
                error_message=error,
                checked_at=now,
            )
            session.add(check)
            await retry_on_lock(session.commit)

            transition = decide_transition(previous_status, status)
            change = None
            persist_error = None
            if transition.action != IncidentAction.NONE:
                try:
                    change = await self._persist_incident(session, site, transition, latency_ms, error, now)
                except IncidentPersistenceError as e:
                    persist_error = e

            payload = incident_payload(change.incident) if change is not None else None

        logger.debug(f"Site {site_id} ({site_name}): {previous_status} -> {status.value}, {transition.action.value}")

        await self.notifier.publish(StatusVerdictEvent(
            site_id=site_id,
            organization_id=organization_id,
            site_name=site_name,
            previous_status=previous_status,
            new_status=status.value,
            latency_ms=latency_ms,
            error_message=error,
            timestamp=now,
        ))
        # Published even when the incident write failed
        if persist_error is not None:
            raise persist_error
        if change is not None:
            await self.notifier.publish(IncidentEvent(
                kind=change.kind,
                incident=payload,
                organization_id=organization_id,
                site_id=site_id,
                site_name=site_name,
                timestamp=now,
            ))

        return VerdictOutcome(
            site_id=site_id,
            previous_status=previous_status,
            new_status=status,
            transition=transition,
            metrics=metrics,
            check=check,
            incident=change,
        )

    async def _persist_incident(
        self,
        session: AsyncSession,
        site: Site,
        transition: Transition,
        latency_ms: int,
        error: Optional[str],
        now: datetime,
    ) -> Optional[IncidentChange]:
        """Second commit of a cycle; one retry when the open-incident index trips."""
        site_id = site.id
        for attempt in range(2):
            try:
                change = await self.incidents.apply(session, site, transition, latency_ms, error, now)
                await retry_on_lock(session.commit)
                return change
            except IntegrityError as e:
                await session.rollback()
                await session.refresh(site)
                if attempt == 0:
                    logger.warning(f"Open incident conflict for site {site_id}, retrying")
                    continue
                raise IncidentPersistenceError(
                    f"Could not persist incident for site {site_id}: {e}"
                ) from e
            except SQLAlchemyError as e:
                await session.rollback()
                raise IncidentPersistenceError(
                    f"Could not persist incident for site {site_id}: {e}"
                ) from e
        return None

    async def run_region_check(
        self,
        session: AsyncSession,
        site: Site,
        regions: Optional[Sequence[str]] = None,
        apply_verdict: bool = False,
    ) -> RegionRunOutcome:
        """Probe from several regions, store one row per region and
        optionally feed the reconciled verdict into the state machine."""
        selected = resolve_regions(regions, fallback=site.regions)
        results = await self.orchestrator.check(site.url, selected)
        summary = summarize_regions(results, settings.region_offline_fraction)

        checked_at = self.clock()
        rows = self.orchestrator.record(session, site.id, results, checked_at)
        await retry_on_lock(session.commit)
        logger.info(
            f"Region check for site {site.id}: {summary.successful_checks}/{summary.regions_checked} "
            f"regions up, overall {summary.overall_status.value}"
        )

        outcome = RegionRunOutcome(checked_at=checked_at, results=results, summary=summary, checks=rows)
        if apply_verdict:
            errors = [f"{r.region}: {r.error}" for r in results if r.error]
            outcome.verdict = await self.apply_verdict(
                session,
                site,
                summary.overall_status,
                summary.average_response_time,
                error="; ".join(errors) or None,
            )
        return outcome

    async def run_trackers(self, session: AsyncSession, site: Site):
        """Certificate and DNS checks piggybacking on a cycle when due."""
        now = self.clock()
        if (
            site.ssl_monitoring_enabled
            and host_port_from_url(site.url) is not None
            and (
                site.ssl_last_checked is None
                or (now - site.ssl_last_checked).total_seconds() >= self.certificates.cache_minutes * 60
            )
        ):
            try:
                await self.certificates.check_site(session, site, now)
            except Exception as e:
                logger.error(f"SSL tracking failed for site {site.id}: {e}")
                await session.rollback()

        if self.dns.is_due(site, now):
            try:
                await self.dns.check_site(session, site, now)
            except Exception as e:
                logger.error(f"DNS tracking failed for site {site.id}: {e}")
                await session.rollback()

    async def get_incident(self, session: AsyncSession, incident_id: int) -> Incident:
        incident = await session.get(Incident, incident_id)
        if incident is None:
            raise IncidentNotFound(f"Incident {incident_id} not found")
        return incident

    async def resolve_incident(
        self,
        session: AsyncSession,
        incident_id: int,
        resolved_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Incident:
        """Manually resolve an incident; already closed ones raise."""
        incident = await self.get_incident(session, incident_id)
        async with self._site_lock(incident.site_id):
            await session.refresh(incident)
            change = self.incidents.resolve(incident, now or self.clock(), resolved_by=resolved_by)
            await retry_on_lock(session.commit)
            payload = incident_payload(incident)

        site = await session.get(Site, incident.site_id)
        await self.notifier.publish(IncidentEvent(
            kind=change.kind,
            incident=payload,
            organization_id=site.organization_id if site else "",
            site_id=incident.site_id,
            site_name=site.name if site else "",
        ))
        return incident

    async def update_incident(
        self,
        session: AsyncSession,
        incident_id: int,
        status: Optional[str] = None,
        severity: Optional[str] = None,
        summary: Optional[str] = None,
        resolved_by: Optional[str] = None,
    ) -> Incident:
        """Manual edit of severity or summary, resolving when asked."""
        incident = await self.get_incident(session, incident_id)
        if severity is not None:
            incident.severity = severity
        if summary is not None:
            incident.summary = summary
        if severity is not None or summary is not None:
            incident.updated_at = self.clock()
            await retry_on_lock(session.commit)

        if status == IncidentStatus.RESOLVED:
            return await self.resolve_incident(session, incident_id, resolved_by=resolved_by)
        return incident

    async def list_open_incidents(self, session: AsyncSession, site_id: int) -> list[Incident]:
        result = await session.execute(
            select(Incident).where(Incident.site_id == site_id, Incident.end_time.is_(None))
        )
        return list(result.scalars().all())


# Global instance
monitor_service = MonitorService()
