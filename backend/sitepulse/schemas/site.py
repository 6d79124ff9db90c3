"""Site check schemas for API."""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field


class CheckResponse(BaseModel):
    """A stored probe result."""
    id: int
    site_id: int
    status: str
    response_time: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None
    checked_at: datetime
    region: Optional[str] = None

    class Config:
        from_attributes = True


class SiteStatusResponse(BaseModel):
    """Summary fields maintained by the check cycle."""
    id: int
    organization_id: str
    name: str
    url: str
    status: str
    uptime: float
    average_latency: Optional[int] = None
    last_checked_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class CheckNowResponse(BaseModel):
    """Result of an on-demand check."""
    site: SiteStatusResponse
    check: CheckResponse
    previous_status: Optional[str] = None
    incident_action: str
    incident_id: Optional[int] = None


class CheckHistoryResponse(BaseModel):
    checks: List[CheckResponse]
    total: int


class RegionCheckRequest(BaseModel):
    """Regions to probe from; unknown ids are dropped."""
    regions: Optional[List[str]] = None
    apply_verdict: bool = False


class RegionResult(BaseModel):
    region: str
    name: str
    location: str
    success: bool
    status: str
    response_time: int
    status_code: Optional[int] = None
    error_message: Optional[str] = None


class RegionStatResponse(BaseModel):
    region: str
    name: str
    location: str
    response_time: int


class RegionSummaryResponse(BaseModel):
    average_response_time: int
    fastest_region: Optional[RegionStatResponse] = None
    slowest_region: Optional[RegionStatResponse] = None
    overall_status: str
    regions_checked: int
    successful_checks: int


class RegionCheckResponse(BaseModel):
    checked_at: datetime
    results: List[RegionResult]
    summary: RegionSummaryResponse
    incident_action: Optional[str] = None


class CheckSessionResponse(BaseModel):
    """Region checks issued together."""
    timestamp: datetime
    checks: List[CheckResponse]


class RegionHistoryResponse(BaseModel):
    available_regions: List[RegionStatResponse] = Field(default_factory=list)
    configured_regions: List[str]
    sessions: List[CheckSessionResponse]
