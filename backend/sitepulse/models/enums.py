"""Status vocabularies shared by models, services and schemas."""
from enum import Enum


class SiteStatus(str, Enum):
    ONLINE = "ONLINE"
    OFFLINE = "OFFLINE"
    DEGRADED = "DEGRADED"
    MAINTENANCE = "MAINTENANCE"
    UNKNOWN = "UNKNOWN"


# Statuses that open or keep an incident
UNHEALTHY_STATUSES = frozenset({SiteStatus.OFFLINE, SiteStatus.DEGRADED})


class IncidentStatus(str, Enum):
    INVESTIGATING = "INVESTIGATING"
    RESOLVED = "RESOLVED"


class Severity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"
