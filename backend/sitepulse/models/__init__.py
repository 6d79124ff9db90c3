"""Database models."""
from .enums import SiteStatus, IncidentStatus, Severity, UNHEALTHY_STATUSES
from .settings import Setting
from .site import Site
from .check import Check
from .incident import Incident
from .ssl_check import SslCheck
from .dns_check import DnsCheck
from .alert import Alert

__all__ = [
    "SiteStatus",
    "IncidentStatus",
    "Severity",
    "UNHEALTHY_STATUSES",
    "Setting",
    "Site",
    "Check",
    "Incident",
    "SslCheck",
    "DnsCheck",
    "Alert",
]
