from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from sitepulse.models import Check, SiteStatus
from sitepulse.services.metrics import MetricsService, compute_uptime, round_latency, smooth_latency


def test_compute_uptime_without_history_uses_current_status() -> None:
    assert compute_uptime(0, 0, SiteStatus.ONLINE) == 100.0
    assert compute_uptime(0, 0, SiteStatus.OFFLINE) == 0.0
    assert compute_uptime(0, 0, SiteStatus.DEGRADED) == 0.0


def test_compute_uptime_rounds_to_two_places() -> None:
    assert compute_uptime(3, 2, SiteStatus.ONLINE) == 66.67
    assert compute_uptime(4, 4, SiteStatus.OFFLINE) == 100.0
    assert compute_uptime(4, 0, SiteStatus.ONLINE) == 0.0


def test_smooth_latency_is_exact() -> None:
    assert smooth_latency(100, 300, 0.2) == 140.0
    assert smooth_latency(None, 250, 0.2) == 250.0
    assert round_latency(smooth_latency(101, 104, 0.2)) == 102  # 101.6


def test_round_latency_half_up_and_non_negative() -> None:
    assert round_latency(140.5) == 141
    assert round_latency(140.49) == 140
    assert round_latency(-3) == 0


@pytest.mark.asyncio
async def test_refresh_counts_primary_checks_inside_window(session, make_site) -> None:
    now = datetime(2025, 3, 1, 12, 0, 0)
    site = await make_site(average_latency=100)
    session.add_all([
        Check(site_id=site.id, status="ONLINE", response_time=90, checked_at=now - timedelta(hours=1)),
        Check(site_id=site.id, status="OFFLINE", response_time=0, checked_at=now - timedelta(hours=2)),
        # Region rows and rows outside the window are ignored
        Check(site_id=site.id, status="OFFLINE", response_time=0, checked_at=now - timedelta(hours=1), region="EU_WEST"),
        Check(site_id=site.id, status="OFFLINE", response_time=0, checked_at=now - timedelta(days=31)),
    ])
    await session.commit()

    update = await MetricsService(window_days=30, smoothing_factor=0.2).refresh(
        session, site, SiteStatus.ONLINE, 300, now
    )

    assert update.total_checks == 2
    assert update.successful_checks == 1
    assert site.uptime == 50.0
    assert site.average_latency == 140
    assert site.status == "ONLINE"
    assert site.last_checked_at == now


@pytest.mark.asyncio
async def test_refresh_new_site_offline_has_zero_uptime(session, make_site) -> None:
    site = await make_site(status="UNKNOWN", average_latency=None)

    update = await MetricsService(window_days=30).refresh(
        session, site, SiteStatus.OFFLINE, 45, datetime(2025, 3, 1)
    )

    assert update.uptime == 0.0
    assert site.average_latency == 45
    assert site.status == "OFFLINE"
