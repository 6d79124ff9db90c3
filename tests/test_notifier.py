from __future__ import annotations

import json
from datetime import datetime

import httpx
import pytest
from sqlalchemy import select

from sitepulse.models import Alert, Setting
from sitepulse.services.events import IncidentEvent, IncidentEventKind, SslExpiryEvent, StatusVerdictEvent
from sitepulse.services.notifier import SIGNATURE_HEADER, Notifier, sign_payload
from sitepulse.services.websocket_manager import ConnectionManager

NOW = datetime(2025, 3, 1, 12, 0, 0)


class FakeSocket:
    def __init__(self, broken: bool = False) -> None:
        self.sent: list[dict] = []
        self.broken = broken

    async def accept(self) -> None:
        pass

    async def send_text(self, text: str) -> None:
        if self.broken:
            raise RuntimeError("socket closed")
        self.sent.append(json.loads(text))


class FakeEmailSender:
    def __init__(self) -> None:
        self.sent: list[tuple[str, str]] = []

    async def send_email(self, config, subject: str, body: str) -> bool:
        self.sent.append((subject, body))
        return True


def _verdict(previous: str, new: str, site_id: int = 1) -> StatusVerdictEvent:
    return StatusVerdictEvent(
        site_id=site_id,
        organization_id="org-1",
        site_name="Example",
        previous_status=previous,
        new_status=new,
        latency_ms=0,
        error_message="HTTP 503",
        timestamp=NOW,
    )


@pytest.mark.asyncio
async def test_websocket_broadcast_scoped_to_organization() -> None:
    manager = ConnectionManager()
    mine, other, broken = FakeSocket(), FakeSocket(), FakeSocket(broken=True)
    await manager.connect(mine, "org-1")
    await manager.connect(broken, "org-1")
    await manager.connect(other, "org-2")

    await manager.broadcast("org-1", {"type": "site:verdict", "at": NOW})

    assert mine.sent == [{"type": "site:verdict", "at": "2025-03-01 12:00:00"}]
    assert other.sent == []
    # Failed sockets are dropped
    assert manager.connection_count == 2


@pytest.mark.asyncio
async def test_status_change_sends_signed_webhook(session, session_factory, make_site) -> None:
    site = await make_site()
    session.add_all([
        Setting(key="webhook_url", value="https://hooks.example.com/sitepulse"),
        Setting(key="webhook_secret", value="topsecret"),
    ])
    await session.commit()

    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200)

    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket, "org-1")
    notifier = Notifier(
        session_factory=session_factory,
        connections=manager,
        email_sender=FakeEmailSender(),
        transport=httpx.MockTransport(handler),
    )

    await notifier.publish(_verdict("ONLINE", "OFFLINE", site_id=site.id))

    assert len(requests) == 1
    request = requests[0]
    assert request.headers["X-SitePulse-Event"] == "site_down"
    assert request.headers[SIGNATURE_HEADER] == sign_payload("topsecret", request.content)
    body = json.loads(request.content)
    assert body["event"] == "site_down"
    assert body["data"]["new_status"] == "OFFLINE"
    assert socket.sent[0]["type"] == "site:status_changed"

    alerts = (await session.execute(select(Alert))).scalars().all()
    assert [(a.alert_type, a.channel, a.success) for a in alerts] == [("site_down", "webhook", 1)]


@pytest.mark.asyncio
async def test_unchanged_verdict_only_reaches_websocket(session_factory) -> None:
    requests: list[httpx.Request] = []
    manager = ConnectionManager()
    socket = FakeSocket()
    await manager.connect(socket, "org-1")
    notifier = Notifier(
        session_factory=session_factory,
        connections=manager,
        transport=httpx.MockTransport(lambda r: requests.append(r) or httpx.Response(200)),
    )

    await notifier.publish(_verdict("ONLINE", "ONLINE"))

    assert requests == []
    assert socket.sent[0]["type"] == "site:verdict"


@pytest.mark.asyncio
async def test_webhook_event_filter_and_email(session, session_factory, make_site) -> None:
    site = await make_site()
    session.add_all([
        Setting(key="webhook_url", value="https://hooks.example.com/sitepulse"),
        Setting(key="webhook_events", value="incident_created"),
        Setting(key="email_alerts_enabled", value="1"),
        Setting(key="alert_email_to", value="ops@example.com"),
    ])
    await session.commit()

    requests: list[httpx.Request] = []
    email = FakeEmailSender()
    notifier = Notifier(
        session_factory=session_factory,
        connections=ConnectionManager(),
        email_sender=email,
        transport=httpx.MockTransport(lambda r: requests.append(r) or httpx.Response(200)),
    )

    await notifier.publish(SslExpiryEvent(
        site_id=site.id,
        organization_id="org-1",
        site_name="Example",
        days_remaining=7,
        issuer="Example Trust",
        expiry_date=NOW,
        timestamp=NOW,
    ))
    await notifier.publish(IncidentEvent(
        kind=IncidentEventKind.CREATED,
        incident={"id": 1, "severity": "HIGH", "start_time": NOW, "summary": "down"},
        organization_id="org-1",
        site_id=site.id,
        site_name="Example",
        timestamp=NOW,
    ))

    assert [r.headers["X-SitePulse-Event"] for r in requests] == ["incident_created"]
    assert [subject for subject, _ in email.sent] == [
        "SSL EXPIRING - Example - 7 days",
        "INCIDENT - Example - HIGH",
    ]


@pytest.mark.asyncio
async def test_webhook_failure_is_recorded_not_raised(session, session_factory, make_site) -> None:
    site = await make_site()
    session.add(Setting(key="webhook_url", value="https://hooks.example.com/sitepulse"))
    await session.commit()

    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("Connection refused", request=request)

    notifier = Notifier(
        session_factory=session_factory,
        connections=ConnectionManager(),
        transport=httpx.MockTransport(handler),
    )

    await notifier.publish(_verdict("OFFLINE", "ONLINE", site_id=site.id))

    alerts = (await session.execute(select(Alert))).scalars().all()
    assert [(a.alert_type, a.success) for a in alerts] == [("site_up", 0)]
