"""Site model - a monitored web endpoint."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, JSON
from sqlalchemy.orm import relationship

from ..database import Base
from .enums import SiteStatus


class Site(Base):
    """A monitored endpoint owned by an organization."""

    __tablename__ = "sites"

    id = Column(Integer, primary_key=True, autoincrement=True)
    organization_id = Column(String, nullable=False, index=True)
    name = Column(String, nullable=False)
    url = Column(String, nullable=False)
    enabled = Column(Boolean, default=True, nullable=False)
    check_interval = Column(Integer, default=60)  # seconds

    # Summary maintained by the check cycle
    status = Column(String, default=SiteStatus.UNKNOWN.value, nullable=False)
    uptime = Column(Float, default=100.0)  # percent, rolling window
    average_latency = Column(Integer, nullable=True)  # ms, smoothed
    last_checked_at = Column(DateTime, nullable=True)
    regions = Column(JSON, nullable=True)  # region ids; NULL = defaults

    # TLS monitoring, summary mirrored from the latest SSL check
    ssl_monitoring_enabled = Column(Boolean, default=True)
    ssl_alert_threshold = Column(Integer, default=30)  # days
    ssl_certificate_valid = Column(Boolean, nullable=True)
    ssl_issuer = Column(String, nullable=True)
    ssl_valid_from = Column(DateTime, nullable=True)
    ssl_expiry_date = Column(DateTime, nullable=True)
    ssl_days_remaining = Column(Integer, nullable=True)
    ssl_last_checked = Column(DateTime, nullable=True)
    ssl_last_alert_at = Column(DateTime, nullable=True)
    ssl_last_alert_days = Column(Integer, nullable=True)

    dns_last_checked = Column(DateTime, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow)

    # Relationships
    checks = relationship("Check", back_populates="site", cascade="all, delete-orphan", passive_deletes=True)
    incidents = relationship("Incident", back_populates="site", cascade="all, delete-orphan", passive_deletes=True)
    ssl_checks = relationship("SslCheck", back_populates="site", cascade="all, delete-orphan", passive_deletes=True)
    dns_checks = relationship("DnsCheck", back_populates="site", cascade="all, delete-orphan", passive_deletes=True)
    alerts = relationship("Alert", back_populates="site", cascade="all, delete-orphan", passive_deletes=True)
