"""Incident schemas for API."""
from datetime import datetime
from typing import Optional, Literal
from pydantic import BaseModel, Field


class IncidentResponse(BaseModel):
    """Schema for incident in API responses."""
    id: int
    site_id: int
    status: str
    severity: str
    start_time: datetime
    end_time: Optional[datetime] = None
    duration: Optional[int] = None  # ms
    summary: Optional[str] = None
    resolved_by_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class IncidentUpdate(BaseModel):
    """Manual edits; status RESOLVED closes the incident."""
    status: Optional[Literal["INVESTIGATING", "RESOLVED"]] = None
    severity: Optional[Literal["LOW", "MEDIUM", "HIGH", "CRITICAL"]] = None
    summary: Optional[str] = Field(None, max_length=5000)
    resolved_by: Optional[str] = None
