"""Notification settings schemas for API."""
from typing import Optional
from pydantic import BaseModel, Field


class SettingsResponse(BaseModel):
    """Schema for settings response."""
    # Webhook settings
    webhook_url: Optional[str] = None
    webhook_secret_set: bool = False
    webhook_events: str = ""

    # Email alert settings
    email_alerts_enabled: bool = False
    email_on_incident_created: bool = True
    email_on_incident_resolved: bool = True
    email_on_ssl_expiring: bool = True
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_username: Optional[str] = None
    smtp_use_tls: bool = True
    alert_email_from: Optional[str] = None
    alert_email_to: Optional[str] = None


class SettingsUpdate(BaseModel):
    """Schema for updating settings."""
    webhook_url: Optional[str] = None
    webhook_secret: Optional[str] = None
    webhook_events: Optional[str] = None

    email_alerts_enabled: Optional[bool] = None
    email_on_incident_created: Optional[bool] = None
    email_on_incident_resolved: Optional[bool] = None
    email_on_ssl_expiring: Optional[bool] = None
    smtp_host: Optional[str] = None
    smtp_port: Optional[int] = Field(None, ge=1, le=65535)
    smtp_username: Optional[str] = None
    smtp_password: Optional[str] = None
    smtp_use_tls: Optional[bool] = None
    alert_email_from: Optional[str] = None
    alert_email_to: Optional[str] = None
