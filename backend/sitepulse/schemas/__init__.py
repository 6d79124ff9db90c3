"""Pydantic schemas for API request/response models."""
from .site import (
    CheckResponse,
    SiteStatusResponse,
    CheckNowResponse,
    CheckHistoryResponse,
    RegionCheckRequest,
    RegionCheckResponse,
    RegionHistoryResponse,
)
from .incident import (
    IncidentResponse,
    IncidentUpdate,
)
from .ssl import (
    SslSummaryResponse,
    SslCheckRunResponse,
    SslHistoryResponse,
    DnsCheckResponse,
    DnsHistoryResponse,
)
from .settings import (
    SettingsResponse,
    SettingsUpdate,
)

__all__ = [
    "CheckResponse",
    "SiteStatusResponse",
    "CheckNowResponse",
    "CheckHistoryResponse",
    "RegionCheckRequest",
    "RegionCheckResponse",
    "RegionHistoryResponse",
    "IncidentResponse",
    "IncidentUpdate",
    "SslSummaryResponse",
    "SslCheckRunResponse",
    "SslHistoryResponse",
    "DnsCheckResponse",
    "DnsHistoryResponse",
    "SettingsResponse",
    "SettingsUpdate",
]
