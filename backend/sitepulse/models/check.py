"""Check model - immutable probe history."""
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class Check(Base):
    """One probe of a site; region is NULL for the primary check cycle."""

    __tablename__ = "site_checks"
    __table_args__ = (
        Index("ix_site_checks_site_checked", "site_id", "checked_at"),
        Index("ix_site_checks_site_region_checked", "site_id", "region", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    status = Column(String, nullable=False)  # ONLINE, OFFLINE, DEGRADED
    response_time = Column(Integer, nullable=False, default=0)  # ms
    status_code = Column(Integer, nullable=True)
    error_message = Column(String, nullable=True)
    checked_at = Column(DateTime, nullable=False)
    region = Column(String, nullable=True)

    site = relationship("Site", back_populates="checks")
