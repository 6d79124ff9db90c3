from __future__ import annotations

import httpx
import pytest
import pytest_asyncio

from sitepulse.config import settings
from sitepulse.database import get_db
from sitepulse.main import create_app
from sitepulse.models import Incident, SiteStatus
from sitepulse.routers import cron as cron_module
from sitepulse.routers import incidents as incidents_module
from sitepulse.routers import sites as sites_module
from sitepulse.services.incidents import IncidentService
from sitepulse.services.metrics import MetricsService
from sitepulse.services.monitor import MonitorService


@pytest.fixture
def monitor(notifier, clock, scripted_probe, probe_result, monkeypatch) -> MonitorService:
    service = MonitorService(
        probe=scripted_probe(probe_result(SiteStatus.OFFLINE, 0, status_code=None, error="Request timeout")),
        metrics=MetricsService(window_days=30),
        incidents=IncidentService(),
        notifier=notifier,
        clock=clock,
    )
    monkeypatch.setattr(sites_module, "monitor_service", service)
    monkeypatch.setattr(incidents_module, "monitor_service", service)
    return service


@pytest_asyncio.fixture
async def client(session_factory, monitor):
    app = create_app()

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.mark.asyncio
async def test_health(client) -> None:
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.asyncio
async def test_check_now_opens_incident(client, make_site) -> None:
    site = await make_site()

    response = await client.post(f"/api/sites/{site.id}/check")

    assert response.status_code == 200
    data = response.json()
    assert data["previous_status"] == "ONLINE"
    assert data["site"]["status"] == "OFFLINE"
    assert data["check"]["error_message"] == "Request timeout"
    assert data["incident_action"] == "OPEN"
    assert data["incident_id"] is not None

    incident = await client.get(f"/api/incidents/{data['incident_id']}")
    assert incident.status_code == 200
    assert incident.json()["severity"] == "HIGH"

    history = await client.get(f"/api/sites/{site.id}/checks")
    assert history.json()["total"] == 1


@pytest.mark.asyncio
async def test_unknown_site_is_404(client) -> None:
    response = await client.post("/api/sites/999/check")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_resolving_closed_incident_conflicts(client, session, make_site, clock) -> None:
    site = await make_site()
    incident = Incident(
        site_id=site.id,
        status="RESOLVED",
        severity="HIGH",
        start_time=clock.now,
        end_time=clock.now,
        duration=0,
    )
    session.add(incident)
    await session.commit()

    response = await client.put(f"/api/incidents/{incident.id}", json={"status": "RESOLVED", "resolved_by": "user-1"})
    assert response.status_code == 409

    missing = await client.put("/api/incidents/999", json={"status": "RESOLVED"})
    assert missing.status_code == 404


@pytest.mark.asyncio
async def test_manual_resolve_via_api(client, session, make_site, clock) -> None:
    site = await make_site(status="OFFLINE")
    incident = Incident(site_id=site.id, status="INVESTIGATING", severity="HIGH", start_time=clock.now)
    session.add(incident)
    await session.commit()
    clock.advance(minutes=3)

    response = await client.put(f"/api/incidents/{incident.id}", json={"status": "RESOLVED", "resolved_by": "user-1"})

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "RESOLVED"
    assert data["resolved_by_id"] == "user-1"
    assert data["duration"] == 3 * 60 * 1000


@pytest.mark.asyncio
async def test_cron_requires_bearer_secret(client, monkeypatch) -> None:
    calls: list[int] = []

    async def fake_run_due_checks():
        calls.append(1)
        return {"checked": 2, "failed": 0}

    monkeypatch.setattr(settings, "cron_secret", "cron-token")
    monkeypatch.setattr(cron_module.scheduler_service, "run_due_checks", fake_run_due_checks)

    denied = await client.post("/api/cron/monitor", headers={"Authorization": "Bearer wrong"})
    assert denied.status_code == 401

    allowed = await client.post("/api/cron/monitor", headers={"Authorization": "Bearer cron-token"})
    assert allowed.status_code == 200
    assert allowed.json()["checked"] == 2
    assert calls == [1]
