"""Notifier service - fans events out to websocket, webhook and email."""
import hashlib
import hmac
import json
import logging
from typing import Optional, Union

import httpx
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Alert, Setting
from ..models.settings import DEFAULT_SETTINGS
from ..utils.time import utcnow
from .email_sender import EmailConfig, EmailSenderService, email_sender_service
from .events import IncidentEvent, IncidentEventKind, SslExpiryEvent, StatusVerdictEvent
from .websocket_manager import ConnectionManager, websocket_manager

logger = logging.getLogger(__name__)

Event = Union[StatusVerdictEvent, IncidentEvent, SslExpiryEvent]

EVENT_HEADER = "X-SitePulse-Event"
SIGNATURE_HEADER = "X-SitePulse-Signature"


def sign_payload(secret: str, body: bytes) -> str:
    """Hex HMAC-SHA256 of the raw request body."""
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _json_default(value):
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class Notifier:
    """Delivers events to every configured channel.

    Delivery failures are logged and recorded in the alerts table; they
    never propagate to the check cycle.
    """

    def __init__(
        self,
        session_factory=None,
        connections: Optional[ConnectionManager] = None,
        email_sender: Optional[EmailSenderService] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._session_factory = session_factory
        self.connections = connections or websocket_manager
        self.email_sender = email_sender or email_sender_service
        self._transport = transport

    def _session(self) -> AsyncSession:
        if self._session_factory is None:
            from ..database import async_session
            return async_session()
        return self._session_factory()

    async def _get_settings(self, session: AsyncSession) -> dict:
        result = await session.execute(select(Setting))
        values = dict(DEFAULT_SETTINGS)
        for setting in result.scalars().all():
            values[setting.key] = setting.value
        return values

    async def publish(self, event: Event):
        """Broadcast, then deliver webhook and email per current settings."""
        try:
            await self.connections.broadcast(event.organization_id, event.to_message())
        except Exception as e:
            logger.error(f"WebSocket broadcast failed: {e}")

        # Unchanged verdicts only go to live dashboards
        if isinstance(event, StatusVerdictEvent) and not event.changed:
            return

        try:
            async with self._session() as session:
                values = await self._get_settings(session)
                await self._deliver_webhook(session, event, values)
                await self._deliver_email(session, event, values)
                await session.commit()
        except Exception as e:
            logger.error(f"Failed to deliver {event.webhook_event} for site {event.site_id}: {e}")

    async def _deliver_webhook(self, session: AsyncSession, event: Event, values: dict):
        url = values.get("webhook_url")
        if not url:
            return
        enabled = {e.strip() for e in (values.get("webhook_events") or "").split(",") if e.strip()}
        if event.webhook_event not in enabled:
            return

        payload = {
            "event": event.webhook_event,
            "timestamp": utcnow().isoformat() + "Z",
            "data": event.to_message(),
        }
        success = await self.send_webhook(url, payload, values.get("webhook_secret") or None)
        session.add(Alert(
            site_id=event.site_id,
            alert_type=event.webhook_event,
            channel="webhook",
            payload=json.dumps(payload, default=_json_default),
            success=1 if success else 0,
        ))

    async def send_webhook(self, url: str, payload: dict, secret: Optional[str] = None) -> bool:
        """POST a JSON payload, signed when a secret is configured."""
        body = json.dumps(payload, default=_json_default).encode()
        headers = {
            "Content-Type": "application/json",
            EVENT_HEADER: payload["event"],
        }
        if secret:
            headers[SIGNATURE_HEADER] = sign_payload(secret, body)

        try:
            async with httpx.AsyncClient(timeout=10, transport=self._transport) as client:
                response = await client.post(url, content=body, headers=headers)
        except Exception as e:
            logger.error(f"Failed to send webhook: {e}")
            return False

        if response.status_code < 400:
            logger.info(f"Webhook sent: {payload['event']}")
            return True
        logger.warning(f"Webhook returned {response.status_code}")
        return False

    def _email_for(self, event: Event, values: dict) -> Optional[tuple[str, str]]:
        """Subject and body for events that mail the team, else None."""
        if isinstance(event, IncidentEvent):
            incident = event.incident
            if event.kind == IncidentEventKind.CREATED and values.get("email_on_incident_created") == "1":
                subject = f"INCIDENT - {event.site_name} - {incident.get('severity')}"
                lines = [
                    f"Site: {event.site_name}",
                    f"Severity: {incident.get('severity')}",
                    f"Started: {incident.get('start_time')}",
                    f"Summary: {incident.get('summary')}",
                ]
            elif event.kind == IncidentEventKind.RESOLVED and values.get("email_on_incident_resolved") == "1":
                subject = f"RESOLVED - {event.site_name}"
                minutes = round((incident.get("duration") or 0) / 60000)
                lines = [
                    f"Site: {event.site_name}",
                    f"Resolved: {incident.get('end_time')}",
                    f"Duration: {minutes} minutes",
                    f"Summary: {incident.get('summary')}",
                ]
            else:
                return None
        elif isinstance(event, SslExpiryEvent) and values.get("email_on_ssl_expiring") == "1":
            subject = f"SSL EXPIRING - {event.site_name} - {event.days_remaining} days"
            lines = [
                f"Site: {event.site_name}",
                f"Issuer: {event.issuer or 'Unknown'}",
                f"Expires: {event.expiry_date}",
                f"Days remaining: {event.days_remaining}",
            ]
        else:
            return None

        body = "\n".join([
            "SitePulse Alert",
            "=" * 40,
            "",
            *lines,
            f"Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
            "",
            "--",
            "SitePulse Monitoring",
        ])
        return subject, body

    async def _deliver_email(self, session: AsyncSession, event: Event, values: dict):
        if values.get("email_alerts_enabled", "0") != "1":
            return
        message = self._email_for(event, values)
        if message is None:
            return
        subject, body = message

        config = EmailConfig.from_settings(values)
        success = await self.email_sender.send_email(config, subject, body)
        session.add(Alert(
            site_id=event.site_id,
            alert_type=event.webhook_event,
            channel="email",
            payload=json.dumps({"subject": subject, "to": config.to_address}),
            success=1 if success else 0,
        ))


# Global instance
notifier = Notifier()
