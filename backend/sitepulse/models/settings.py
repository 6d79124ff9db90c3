"""Settings model - key-value store for notification configuration."""
from datetime import datetime
from sqlalchemy import Column, String, DateTime

from ..database import Base


class Setting(Base):
    """Global settings stored as key-value pairs."""

    __tablename__ = "settings"

    key = Column(String, primary_key=True)
    value = Column(String, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


# Default settings
DEFAULT_SETTINGS = {
    # Webhook settings
    "webhook_url": "",
    "webhook_secret": "",  # HMAC-SHA256 signing key, optional
    "webhook_events": "incident_created,incident_updated,incident_resolved,site_down,site_up,site_degraded,ssl_expiring",

    # Email alert settings
    "email_alerts_enabled": "0",  # 0 or 1
    "email_on_incident_created": "1",
    "email_on_incident_resolved": "1",
    "email_on_ssl_expiring": "1",
    "smtp_host": "",
    "smtp_port": "587",
    "smtp_username": "",
    "smtp_password": "",
    "smtp_use_tls": "1",  # 0 or 1
    "alert_email_from": "",
    "alert_email_to": "",  # comma-separated subscribers
}
