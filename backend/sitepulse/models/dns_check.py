"""DnsCheck model - resolved record snapshots with change flags."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

from ..database import Base


class DnsCheck(Base):
    """DNS records for a site's hostname at one point in time."""

    __tablename__ = "dns_checks"
    __table_args__ = (
        Index("ix_dns_checks_site_checked", "site_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    hostname = Column(String, nullable=False)
    resolution_time = Column(Integer, nullable=True)  # ms
    a_records = Column(JSON, default=list)
    aaaa_records = Column(JSON, default=list)
    cname_records = Column(JSON, default=list)
    mx_records = Column(JSON, default=list)  # [{"priority": int, "exchange": str}]
    ns_records = Column(JSON, default=list)
    txt_records = Column(JSON, default=list)
    soa_record = Column(JSON, nullable=True)
    records_hash = Column(String, nullable=True)
    previous_hash = Column(String, nullable=True)
    changes_detected = Column(Boolean, default=False, nullable=False)
    changes = Column(JSON, default=list)  # per record type diff
    success = Column(Boolean, default=True, nullable=False)
    error_message = Column(String, nullable=True)
    unresolved_types = Column(JSON, default=list)  # types that failed with no earlier value
    checked_at = Column(DateTime, nullable=False)

    site = relationship("Site", back_populates="dns_checks")
