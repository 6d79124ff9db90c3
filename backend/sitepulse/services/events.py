"""Outbound events emitted by the check cycle and the trackers."""
from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from ..models import SiteStatus
from ..utils.time import utcnow


class IncidentEventKind(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    RESOLVED = "resolved"


@dataclass
class StatusVerdictEvent:
    """Emitted after every check cycle, changed or not."""
    site_id: int
    organization_id: str
    site_name: str
    previous_status: Optional[str]
    new_status: str
    latency_ms: int
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def changed(self) -> bool:
        return self.previous_status != self.new_status

    @property
    def webhook_event(self) -> str:
        if self.new_status == SiteStatus.OFFLINE:
            return "site_down"
        if self.new_status == SiteStatus.DEGRADED:
            return "site_degraded"
        return "site_up"

    def to_message(self) -> dict:
        data = asdict(self)
        data["type"] = "site:status_changed" if self.changed else "site:verdict"
        return data


@dataclass
class IncidentEvent:
    kind: IncidentEventKind
    incident: dict[str, Any]
    organization_id: str
    site_id: int
    site_name: str = ""
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def webhook_event(self) -> str:
        return f"incident_{IncidentEventKind(self.kind).value}"

    def to_message(self) -> dict:
        return {
            "type": f"incident:{IncidentEventKind(self.kind).value}",
            "incident": self.incident,
            "organization_id": self.organization_id,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "timestamp": self.timestamp,
        }


@dataclass
class SslExpiryEvent:
    """Certificate is inside the alert threshold and a milestone was crossed."""
    site_id: int
    organization_id: str
    site_name: str
    days_remaining: int
    issuer: Optional[str]
    expiry_date: Optional[datetime]
    timestamp: datetime = field(default_factory=utcnow)

    webhook_event = "ssl_expiring"

    def to_message(self) -> dict:
        data = asdict(self)
        data["type"] = "ssl:expiring"
        return data
