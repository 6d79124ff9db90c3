"""Certificate and DNS tracking schemas for API."""
from datetime import datetime
from typing import Any, List, Optional
from pydantic import BaseModel


class SslSummaryResponse(BaseModel):
    """Certificate summary mirrored on the site."""
    site_id: int
    valid: Optional[bool] = None
    issuer: Optional[str] = None
    valid_from: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    days_remaining: Optional[int] = None
    last_checked: Optional[datetime] = None
    urgency: str
    cached: bool
    is_https: Optional[bool] = None
    error: Optional[str] = None


class SslCheckResponse(BaseModel):
    id: int
    site_id: int
    valid: bool
    issuer: Optional[str] = None
    subject: Optional[str] = None
    valid_from: Optional[datetime] = None
    valid_to: Optional[datetime] = None
    days_remaining: Optional[int] = None
    serial_number: Optional[str] = None
    fingerprint: Optional[str] = None
    algorithm: Optional[str] = None
    authorized: Optional[bool] = None
    authorization_error: Optional[str] = None
    error_message: Optional[str] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class CertificateChangeResponse(BaseModel):
    type: str
    checked_at: datetime
    from_serial: Optional[str] = None
    to_serial: Optional[str] = None
    from_expiry: Optional[datetime] = None
    to_expiry: Optional[datetime] = None
    days_extended: Optional[int] = None

    class Config:
        from_attributes = True


class SslCheckRunResponse(BaseModel):
    """Result of an on-demand certificate check."""
    is_https: bool
    check: Optional[SslCheckResponse] = None
    changes: List[CertificateChangeResponse] = []
    alert_sent: bool = False
    error: Optional[str] = None


class SslHistoryResponse(BaseModel):
    checks: List[SslCheckResponse]
    changes: List[CertificateChangeResponse]
    total_checks: int


class DnsCheckResponse(BaseModel):
    id: int
    site_id: int
    hostname: str
    resolution_time: Optional[int] = None
    a_records: List[Any] = []
    aaaa_records: List[Any] = []
    cname_records: List[Any] = []
    mx_records: List[Any] = []
    ns_records: List[Any] = []
    txt_records: List[Any] = []
    soa_record: Optional[dict] = None
    records_hash: Optional[str] = None
    previous_hash: Optional[str] = None
    changes_detected: bool
    changes: List[dict] = []
    success: bool
    error_message: Optional[str] = None
    unresolved_types: Optional[List[str]] = None
    checked_at: datetime

    class Config:
        from_attributes = True


class DnsStatistics(BaseModel):
    total_records: int
    record_types: dict
    has_ipv6: bool
    has_mail_servers: bool
    nameserver_count: int


class DnsHistoryResponse(BaseModel):
    latest: Optional[DnsCheckResponse] = None
    history: List[DnsCheckResponse]
    statistics: Optional[DnsStatistics] = None
