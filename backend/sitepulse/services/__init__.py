"""Services."""
from .probe import ProbeService, ProbeResult, probe_service
from .regions import RegionOrchestrator, region_orchestrator
from .metrics import MetricsService, metrics_service
from .incidents import IncidentService, incident_service, decide_transition
from .ssl_tracker import CertificateTracker, certificate_tracker
from .dns_tracker import DnsMonitor, dns_monitor
from .notifier import Notifier, notifier
from .monitor import MonitorService, monitor_service
from .scheduler import SchedulerService, scheduler_service
from .websocket_manager import ConnectionManager, websocket_manager

__all__ = [
    "ProbeService",
    "ProbeResult",
    "probe_service",
    "RegionOrchestrator",
    "region_orchestrator",
    "MetricsService",
    "metrics_service",
    "IncidentService",
    "incident_service",
    "decide_transition",
    "CertificateTracker",
    "certificate_tracker",
    "DnsMonitor",
    "dns_monitor",
    "Notifier",
    "notifier",
    "MonitorService",
    "monitor_service",
    "SchedulerService",
    "scheduler_service",
    "ConnectionManager",
    "websocket_manager",
]
