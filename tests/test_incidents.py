from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from sitepulse.models import Check, Incident, Site, SiteStatus
from sitepulse.services.events import IncidentEvent, IncidentEventKind, StatusVerdictEvent
from sitepulse.services.incidents import (
    IncidentAction,
    IncidentAlreadyResolved,
    IncidentPersistenceError,
    IncidentService,
    decide_transition,
)
from sitepulse.services.metrics import MetricsService
from sitepulse.services.monitor import MonitorService


@pytest.mark.parametrize(
    ("previous", "new", "action"),
    [
        ("ONLINE", "OFFLINE", IncidentAction.OPEN),
        ("ONLINE", "DEGRADED", IncidentAction.OPEN),
        ("UNKNOWN", "OFFLINE", IncidentAction.OPEN),
        ("MAINTENANCE", "DEGRADED", IncidentAction.OPEN),
        (None, "OFFLINE", IncidentAction.OPEN),
        ("OFFLINE", "DEGRADED", IncidentAction.UPDATE),
        ("DEGRADED", "OFFLINE", IncidentAction.UPDATE),
        ("OFFLINE", "OFFLINE", IncidentAction.NONE),
        ("DEGRADED", "DEGRADED", IncidentAction.NONE),
        ("OFFLINE", "ONLINE", IncidentAction.RESOLVE),
        ("DEGRADED", "MAINTENANCE", IncidentAction.RESOLVE),
        ("ONLINE", "ONLINE", IncidentAction.NONE),
        ("UNKNOWN", "ONLINE", IncidentAction.NONE),
    ],
)
def test_decide_transition(previous, new, action) -> None:
    transition = decide_transition(previous, new)
    assert transition.action == action
    assert transition.new_status == SiteStatus(new)


def _service(notifier, clock, **kwargs) -> MonitorService:
    return MonitorService(
        metrics=MetricsService(window_days=30, smoothing_factor=0.2),
        incidents=kwargs.pop("incidents", IncidentService()),
        notifier=notifier,
        clock=clock,
        **kwargs,
    )


async def _open_incidents(session, site_id: int) -> list[Incident]:
    result = await session.execute(
        select(Incident).where(Incident.site_id == site_id, Incident.end_time.is_(None))
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_incident_lifecycle(session, make_site, notifier, clock) -> None:
    site = await make_site(name="Shop")
    service = _service(notifier, clock)

    down = await service.apply_verdict(session, site, SiteStatus.OFFLINE, 1200, status_code=503, error="HTTP 503")
    assert down.transition.action == IncidentAction.OPEN
    incident = down.incident.incident
    assert incident.severity == "HIGH"
    assert incident.status == "INVESTIGATING"
    assert incident.start_time == clock.now
    assert incident.summary == "Automated detection: Shop is offline. Response time: 1200ms. Error: HTTP 503"

    clock.advance(minutes=2)
    degraded = await service.apply_verdict(session, site, SiteStatus.DEGRADED, 6000)
    assert degraded.transition.action == IncidentAction.UPDATE
    assert degraded.incident.incident.id == incident.id
    assert degraded.incident.incident.severity == "MEDIUM"

    clock.advance(minutes=3)
    up = await service.apply_verdict(session, site, SiteStatus.ONLINE, 100)
    assert up.transition.action == IncidentAction.RESOLVE
    resolved = up.incident.incident
    assert resolved.id == incident.id
    assert resolved.status == "RESOLVED"
    assert resolved.end_time == clock.now
    assert resolved.duration == 5 * 60 * 1000
    assert resolved.summary.endswith("Auto-resolved: Site back online.")
    assert resolved.resolved_by_id is None

    kinds = [e.kind for e in notifier.of_type(IncidentEvent)]
    assert kinds == [IncidentEventKind.CREATED, IncidentEventKind.UPDATED, IncidentEventKind.RESOLVED]
    verdicts = notifier.of_type(StatusVerdictEvent)
    assert [(v.previous_status, v.new_status) for v in verdicts] == [
        ("ONLINE", "OFFLINE"),
        ("OFFLINE", "DEGRADED"),
        ("DEGRADED", "ONLINE"),
    ]
    assert all(e.organization_id == "org-1" for e in notifier.events)

    checks = await session.scalar(select(func.count(Check.id)).where(Check.site_id == site.id))
    assert checks == 3
    assert await _open_incidents(session, site.id) == []


@pytest.mark.asyncio
async def test_repeated_offline_keeps_single_incident(session, make_site, notifier, clock) -> None:
    site = await make_site()
    service = _service(notifier, clock)

    await service.apply_verdict(session, site, SiteStatus.OFFLINE, 0)
    clock.advance(minutes=1)
    second = await service.apply_verdict(session, site, SiteStatus.OFFLINE, 0)

    assert second.transition.action == IncidentAction.NONE
    assert second.incident is None
    assert len(await _open_incidents(session, site.id)) == 1
    assert len(notifier.of_type(IncidentEvent)) == 1


@pytest.mark.asyncio
async def test_open_reuses_existing_open_incident(session, make_site, notifier, clock) -> None:
    site = await make_site()
    existing = Incident(site_id=site.id, status="INVESTIGATING", severity="MEDIUM", start_time=clock.now, summary="earlier")
    session.add(existing)
    await session.commit()

    outcome = await _service(notifier, clock).apply_verdict(session, site, SiteStatus.OFFLINE, 0)

    assert outcome.transition.action == IncidentAction.OPEN
    assert outcome.incident.kind == IncidentEventKind.UPDATED
    assert outcome.incident.incident.id == existing.id
    assert len(await _open_incidents(session, site.id)) == 1


@pytest.mark.asyncio
async def test_concurrent_cycles_open_one_incident(session_factory, make_site, notifier, clock) -> None:
    site = await make_site()
    service = _service(notifier, clock)

    async def cycle():
        async with session_factory() as s:
            own_site = await s.get(Site, site.id)
            return await service.apply_verdict(s, own_site, SiteStatus.OFFLINE, 0)

    first, second = await asyncio.gather(cycle(), cycle())

    actions = sorted([first.transition.action.value, second.transition.action.value])
    assert actions == ["NONE", "OPEN"]
    async with session_factory() as s:
        assert len(await _open_incidents(s, site.id)) == 1
    assert service._locks == {}


@pytest.mark.asyncio
async def test_site_locks_are_released_after_cycles(session, make_site, notifier, clock) -> None:
    first = await make_site(name="One")
    second = await make_site(name="Two", url="https://two.example.com")
    service = _service(notifier, clock)

    await service.apply_verdict(session, first, SiteStatus.OFFLINE, 0)
    await service.apply_verdict(session, second, SiteStatus.ONLINE, 50)
    opened = await service.list_open_incidents(session, first.id)
    await service.resolve_incident(session, opened[0].id, resolved_by="user-1")

    assert service._locks == {}
    assert service._lock_users == {}


@pytest.mark.asyncio
async def test_unique_conflict_is_retried_once(session, make_site, notifier, clock, monkeypatch) -> None:
    site = await make_site()
    session.add(Incident(site_id=site.id, status="INVESTIGATING", severity="HIGH", start_time=clock.now))
    await session.commit()

    incidents = IncidentService()
    real_get_open = incidents.get_open
    calls = {"n": 0}

    async def stale_get_open(s, site_id):
        calls["n"] += 1
        if calls["n"] == 1:
            return None  # miss the open row once, as a racing writer would
        return await real_get_open(s, site_id)

    monkeypatch.setattr(incidents, "get_open", stale_get_open)

    outcome = await _service(notifier, clock, incidents=incidents).apply_verdict(
        session, site, SiteStatus.DEGRADED, 0
    )

    assert calls["n"] == 2
    assert outcome.incident.kind == IncidentEventKind.UPDATED
    assert len(await _open_incidents(session, site.id)) == 1


@pytest.mark.asyncio
async def test_incident_failure_after_status_commit(session_factory, session, make_site, notifier, clock, monkeypatch) -> None:
    site = await make_site()
    incidents = IncidentService()

    async def broken_apply(*args, **kwargs):
        raise OperationalError("INSERT INTO incidents", {}, Exception("disk I/O error"))

    monkeypatch.setattr(incidents, "apply", broken_apply)

    with pytest.raises(IncidentPersistenceError):
        await _service(notifier, clock, incidents=incidents).apply_verdict(session, site, SiteStatus.OFFLINE, 0)

    verdicts = notifier.of_type(StatusVerdictEvent)
    assert [(v.previous_status, v.new_status) for v in verdicts] == [("ONLINE", "OFFLINE")]
    assert notifier.of_type(IncidentEvent) == []

    async with session_factory() as s:
        stored = await s.get(Site, site.id)
        assert stored.status == "OFFLINE"
        assert await s.scalar(select(func.count(Check.id)).where(Check.site_id == site.id)) == 1
        assert await _open_incidents(s, site.id) == []


@pytest.mark.asyncio
async def test_manual_resolution_is_not_repeated(session, make_site, notifier, clock) -> None:
    site = await make_site()
    service = _service(notifier, clock)
    opened = await service.apply_verdict(session, site, SiteStatus.OFFLINE, 0)
    incident_id = opened.incident.incident.id

    clock.advance(minutes=10)
    resolved = await service.resolve_incident(session, incident_id, resolved_by="user-7")

    assert resolved.status == "RESOLVED"
    assert resolved.resolved_by_id == "user-7"
    assert resolved.duration == 10 * 60 * 1000
    assert "Auto-resolved" not in (resolved.summary or "")

    with pytest.raises(IncidentAlreadyResolved):
        await service.resolve_incident(session, incident_id, resolved_by="user-8")

    # The site recovering later does not touch the closed incident
    clock.advance(minutes=1)
    up = await service.apply_verdict(session, site, SiteStatus.ONLINE, 100)
    assert up.transition.action == IncidentAction.RESOLVE
    assert up.incident is None
    refreshed = await session.get(Incident, incident_id)
    assert refreshed.resolved_by_id == "user-7"
