"""Incident model - a tracked period of unhealthy status."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from ..database import Base
from .enums import IncidentStatus


class Incident(Base):
    """Incident lifecycle row; open while end_time is NULL."""

    __tablename__ = "incidents"
    __table_args__ = (
        # At most one open incident per site
        Index(
            "uq_incidents_open_per_site",
            "site_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False, index=True)
    status = Column(String, nullable=False, default=IncidentStatus.INVESTIGATING.value)
    severity = Column(String, nullable=False)  # LOW, MEDIUM, HIGH, CRITICAL
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
    duration = Column(Integer, nullable=True)  # ms, set together with end_time
    summary = Column(String, nullable=True)
    resolved_by_id = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    site = relationship("Site", back_populates="incidents")

    @property
    def is_open(self) -> bool:
        return self.end_time is None
