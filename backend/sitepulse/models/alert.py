"""Alert model - log of notifications sent for a site."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class Alert(Base):
    """Record of a notification sent via webhook or email."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String, nullable=False)  # incident_created, incident_resolved, ssl_expiring, site_down, ...
    channel = Column(String, default="webhook")  # webhook, email
    sent_at = Column(DateTime, default=datetime.utcnow)
    payload = Column(String, nullable=True)  # JSON for webhook or email summary
    success = Column(Integer, nullable=True)  # 1=success, 0=failed

    site = relationship("Site", back_populates="alerts")
