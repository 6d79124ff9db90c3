from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any, Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from sitepulse import models  # noqa: F401
from sitepulse.database import Base
from sitepulse.models import Site, SiteStatus
from sitepulse.services.probe import ProbeResult


class RecordingNotifier:
    """Collects published events instead of delivering them."""

    def __init__(self) -> None:
        self.events: list[Any] = []

    async def publish(self, event: Any) -> None:
        self.events.append(event)

    def of_type(self, cls: type) -> list[Any]:
        return [e for e in self.events if isinstance(e, cls)]


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class ScriptedProbe:
    """Returns queued probe results; the last one repeats."""

    def __init__(self, *results: ProbeResult) -> None:
        self.results = list(results)
        self.calls: list[tuple[str, Optional[str]]] = []

    async def probe(self, url: str, timeout: Optional[float] = None, region: Optional[str] = None) -> ProbeResult:
        self.calls.append((url, region))
        if len(self.results) > 1:
            return self.results.pop(0)
        return self.results[0]


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'sitepulse-test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_site(session):
    async def _make(**overrides: Any) -> Site:
        values: dict[str, Any] = {
            "organization_id": "org-1",
            "name": "Example",
            "url": "https://example.com",
            "enabled": True,
            "check_interval": 60,
            "status": SiteStatus.ONLINE.value,
            "uptime": 100.0,
            "ssl_monitoring_enabled": True,
            "ssl_alert_threshold": 30,
        }
        values.update(overrides)
        site = Site(**values)
        session.add(site)
        await session.commit()
        return site

    return _make


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 12, 0, 0))


@pytest.fixture
def scripted_probe():
    return ScriptedProbe


@pytest.fixture
def probe_result():
    def _result(status: SiteStatus, latency_ms: int = 100, status_code: Optional[int] = 200, error: Optional[str] = None) -> ProbeResult:
        return ProbeResult(status=status, latency_ms=latency_ms, status_code=status_code, error=error)

    return _result
