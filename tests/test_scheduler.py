from __future__ import annotations

from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select

from sitepulse.config import settings
from sitepulse.models import Check
from sitepulse.services.scheduler import SchedulerService, is_site_due
from sitepulse.utils.time import utcnow

NOW = datetime(2025, 3, 1, 12, 0, 0)


def test_is_site_due(monkeypatch) -> None:
    monkeypatch.setattr(settings, "scheduler_tick_seconds", 10)

    assert is_site_due(60, None, NOW) is True
    assert is_site_due(60, NOW - timedelta(seconds=30), NOW) is False
    assert is_site_due(60, NOW - timedelta(seconds=56), NOW) is True
    assert is_site_due(None, NOW - timedelta(seconds=60), NOW) is True


class FakeMonitor:
    def __init__(self, failing: set[str] = frozenset()) -> None:
        self.failing = failing
        self.checked: list[str] = []

    async def check_site(self, session, site, run_trackers: bool = True) -> None:
        self.checked.append(site.name)
        if site.name in self.failing:
            raise RuntimeError("probe exploded")


@pytest.mark.asyncio
async def test_run_due_checks_skips_disabled_maintenance_and_fresh(session_factory, make_site) -> None:
    await make_site(name="due")
    await make_site(name="broken")
    await make_site(name="disabled", enabled=False)
    await make_site(name="maintenance", status="MAINTENANCE")
    await make_site(name="fresh", last_checked_at=NOW - timedelta(seconds=5))

    monitor = FakeMonitor(failing={"broken"})
    scheduler = SchedulerService(monitor=monitor, session_factory=session_factory)

    counts = await scheduler.run_due_checks(NOW)

    assert sorted(monitor.checked) == ["broken", "due"]
    assert counts == {"checked": 1, "failed": 1}


@pytest.mark.asyncio
async def test_run_due_checks_with_nothing_due(session_factory) -> None:
    scheduler = SchedulerService(monitor=FakeMonitor(), session_factory=session_factory)
    assert await scheduler.run_due_checks(NOW) == {"checked": 0, "failed": 0}


@pytest.mark.asyncio
async def test_cleanup_prunes_history_past_retention(session, session_factory, make_site, monkeypatch) -> None:
    monkeypatch.setattr(settings, "check_retention_days", 30)
    site = await make_site()
    session.add_all([
        Check(site_id=site.id, status="ONLINE", response_time=10, checked_at=utcnow() - timedelta(days=45)),
        Check(site_id=site.id, status="ONLINE", response_time=10, checked_at=utcnow() - timedelta(days=1)),
    ])
    await session.commit()

    await SchedulerService(monitor=FakeMonitor(), session_factory=session_factory)._cleanup_old_records()

    async with session_factory() as s:
        assert await s.scalar(select(func.count(Check.id))) == 1
