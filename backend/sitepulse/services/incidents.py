"""Incident state machine.

``decide_transition`` is a pure function of the previous and new site
status; ``IncidentService`` applies the resulting action to the incidents
table. Healthy means any status other than OFFLINE or DEGRADED.

    healthy   -> unhealthy          OPEN
    unhealthy -> other unhealthy    UPDATE
    unhealthy -> same unhealthy     NONE
    unhealthy -> healthy            RESOLVE
    healthy   -> healthy            NONE
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Incident, IncidentStatus, Severity, Site, SiteStatus, UNHEALTHY_STATUSES
from .events import IncidentEventKind

logger = logging.getLogger(__name__)


class IncidentPersistenceError(Exception):
    """The incident write failed after the site status was committed."""


class IncidentAlreadyResolved(Exception):
    """A closed incident cannot be resolved again."""


class IncidentNotFound(LookupError):
    pass


class IncidentAction(str, Enum):
    NONE = "NONE"
    OPEN = "OPEN"
    UPDATE = "UPDATE"
    RESOLVE = "RESOLVE"


@dataclass(frozen=True)
class Transition:
    new_status: SiteStatus
    action: IncidentAction


def is_unhealthy(status: Optional[str]) -> bool:
    return status in UNHEALTHY_STATUSES


def severity_for(status: str) -> Severity:
    return Severity.HIGH if status == SiteStatus.OFFLINE else Severity.MEDIUM


def decide_transition(previous_status: Optional[str], new_status: str) -> Transition:
    """Incident action implied by moving from ``previous_status`` to ``new_status``."""
    new_status = SiteStatus(new_status)
    was_unhealthy = is_unhealthy(previous_status)
    now_unhealthy = is_unhealthy(new_status)

    if now_unhealthy and not was_unhealthy:
        action = IncidentAction.OPEN
    elif now_unhealthy and previous_status != new_status:
        action = IncidentAction.UPDATE
    elif was_unhealthy and not now_unhealthy:
        action = IncidentAction.RESOLVE
    else:
        action = IncidentAction.NONE
    return Transition(new_status=new_status, action=action)


def detection_summary(site_name: str, status: str, latency_ms: int, error: Optional[str]) -> str:
    summary = f"Automated detection: {site_name} is {SiteStatus(status).value.lower()}. Response time: {latency_ms}ms."
    if error:
        summary += f" Error: {error}"
    return summary


def duration_ms(start: datetime, end: datetime) -> int:
    return max(0, int((end - start).total_seconds() * 1000))


def incident_payload(incident: Incident) -> dict[str, Any]:
    """Serializable view of an incident for events and API responses."""
    return {
        "id": incident.id,
        "site_id": incident.site_id,
        "status": incident.status,
        "severity": incident.severity,
        "start_time": incident.start_time.isoformat() if incident.start_time else None,
        "end_time": incident.end_time.isoformat() if incident.end_time else None,
        "duration": incident.duration,
        "summary": incident.summary,
        "resolved_by_id": incident.resolved_by_id,
    }


@dataclass
class IncidentChange:
    """An incident row touched by a transition and how."""
    incident: Incident
    kind: IncidentEventKind


class IncidentService:
    """Opens, updates and resolves incident rows."""

    async def get_open(self, session: AsyncSession, site_id: int) -> Optional[Incident]:
        result = await session.execute(
            select(Incident)
            .where(Incident.site_id == site_id, Incident.end_time.is_(None))
            .order_by(Incident.start_time.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    def _create(
        self,
        session: AsyncSession,
        site: Site,
        status: str,
        latency_ms: int,
        error: Optional[str],
        now: datetime,
    ) -> Incident:
        incident = Incident(
            site_id=site.id,
            status=IncidentStatus.INVESTIGATING.value,
            severity=severity_for(status).value,
            start_time=now,
            summary=detection_summary(site.name, status, latency_ms, error),
            created_at=now,
            updated_at=now,
        )
        session.add(incident)
        logger.info(f"Opened {incident.severity} incident for site {site.id} ({site.name}): {status}")
        return incident

    def _escalate(self, incident: Incident, status: str, latency_ms: int, now: datetime):
        incident.severity = severity_for(status).value
        note = f"Status changed to {SiteStatus(status).value.lower()}. Response time: {latency_ms}ms."
        incident.summary = f"{incident.summary} - {note}" if incident.summary else note
        incident.updated_at = now

    async def open(
        self,
        session: AsyncSession,
        site: Site,
        status: str,
        latency_ms: int,
        error: Optional[str],
        now: datetime,
    ) -> IncidentChange:
        """Open an incident, reusing one that is already open."""
        existing = await self.get_open(session, site.id)
        if existing is not None:
            self._escalate(existing, status, latency_ms, now)
            return IncidentChange(existing, IncidentEventKind.UPDATED)
        return IncidentChange(
            self._create(session, site, status, latency_ms, error, now),
            IncidentEventKind.CREATED,
        )

    async def update(
        self,
        session: AsyncSession,
        site: Site,
        status: str,
        latency_ms: int,
        error: Optional[str],
        now: datetime,
    ) -> IncidentChange:
        """Record a change between unhealthy states; opens one if none is open."""
        existing = await self.get_open(session, site.id)
        if existing is None:
            return IncidentChange(
                self._create(session, site, status, latency_ms, error, now),
                IncidentEventKind.CREATED,
            )
        self._escalate(existing, status, latency_ms, now)
        return IncidentChange(existing, IncidentEventKind.UPDATED)

    def resolve(
        self,
        incident: Incident,
        now: datetime,
        resolved_by: Optional[str] = None,
    ) -> IncidentChange:
        """Close an open incident. Closed incidents are never re-closed."""
        if incident.end_time is not None:
            raise IncidentAlreadyResolved(f"Incident {incident.id} is already resolved")

        incident.end_time = now
        incident.duration = duration_ms(incident.start_time, now)
        incident.status = IncidentStatus.RESOLVED.value
        incident.updated_at = now
        if resolved_by is not None:
            incident.resolved_by_id = resolved_by
        elif incident.summary:
            incident.summary = f"{incident.summary} - Auto-resolved: Site back online."
        else:
            incident.summary = (
                f"Auto-resolved: Site back online after {round(incident.duration / 60000)} minutes."
            )
        logger.info(f"Resolved incident {incident.id} for site {incident.site_id} after {incident.duration}ms")
        return IncidentChange(incident, IncidentEventKind.RESOLVED)

    async def apply(
        self,
        session: AsyncSession,
        site: Site,
        transition: Transition,
        latency_ms: int,
        error: Optional[str],
        now: datetime,
    ) -> Optional[IncidentChange]:
        """Stage the incident write for a transition; caller commits."""
        if transition.action == IncidentAction.OPEN:
            return await self.open(session, site, transition.new_status, latency_ms, error, now)
        if transition.action == IncidentAction.UPDATE:
            return await self.update(session, site, transition.new_status, latency_ms, error, now)
        if transition.action == IncidentAction.RESOLVE:
            incident = await self.get_open(session, site.id)
            if incident is None:
                return None
            return self.resolve(incident, now)
        return None


# Global instance
incident_service = IncidentService()
