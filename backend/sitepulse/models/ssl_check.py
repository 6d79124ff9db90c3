"""SslCheck model - certificate snapshot history."""
from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship

from ..database import Base


class SslCheck(Base):
    """Result of one TLS certificate inspection."""

    __tablename__ = "ssl_checks"
    __table_args__ = (
        Index("ix_ssl_checks_site_checked", "site_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    site_id = Column(Integer, ForeignKey("sites.id", ondelete="CASCADE"), nullable=False)
    organization_id = Column(String, nullable=False, index=True)
    valid = Column(Boolean, nullable=False, default=False)
    issuer = Column(String, nullable=True)
    subject = Column(String, nullable=True)
    valid_from = Column(DateTime, nullable=True)
    valid_to = Column(DateTime, nullable=True)
    days_remaining = Column(Integer, nullable=True)
    serial_number = Column(String, nullable=True)
    fingerprint = Column(String, nullable=True)  # SHA-256, colon separated
    algorithm = Column(String, nullable=True)
    authorized = Column(Boolean, nullable=True)
    authorization_error = Column(String, nullable=True)
    error_message = Column(String, nullable=True)
    checked_at = Column(DateTime, nullable=False)

    site = relationship("Site", back_populates="ssl_checks")
