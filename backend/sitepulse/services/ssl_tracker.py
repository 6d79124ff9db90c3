"""Certificate lifecycle tracker - expiry alerts, renewals and analytics."""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import Site, SslCheck
from ..utils.db_utils import retry_on_lock
from ..utils.time import utcnow
from .events import SslExpiryEvent
from .tls_inspector import CertificateInfo, TlsInspector, tls_inspector

logger = logging.getLogger(__name__)

# Days-remaining values that each earn one alert, descending
SSL_ALERT_MILESTONES = (30, 14, 7, 3, 1, 0, -1)

ALERT_COOLDOWN = timedelta(days=1)


def should_alert(
    days_remaining: Optional[int],
    threshold: int = 30,
    last_alert_at: Optional[datetime] = None,
    last_alert_days: Optional[int] = None,
    now: Optional[datetime] = None,
) -> bool:
    """Whether an expiry alert is due.

    Inside the threshold the first observation always alerts. After that
    an alert needs a milestone crossed since the last one and at least a
    day of cooldown. A certificate with more days left than at the last
    alert has been replaced, so its alert state starts over.
    """
    if days_remaining is None or days_remaining > threshold:
        return False
    if last_alert_at is None:
        return True
    if last_alert_days is not None and days_remaining > last_alert_days:
        return True

    now = now or utcnow()
    if now - last_alert_at < ALERT_COOLDOWN:
        return False

    if last_alert_days is None:
        return days_remaining in SSL_ALERT_MILESTONES
    return any(days_remaining <= m < last_alert_days for m in SSL_ALERT_MILESTONES)


def classify_urgency(days_remaining: Optional[int]) -> str:
    if days_remaining is None:
        return "unknown"
    if days_remaining < 0:
        return "expired"
    if days_remaining < 7:
        return "critical"
    if days_remaining < 30:
        return "warning"
    return "healthy"


@dataclass
class CertificateChange:
    """A renewal or validity flip between two consecutive checks."""
    type: str  # renewal, became_valid, became_invalid
    checked_at: datetime
    from_serial: Optional[str] = None
    to_serial: Optional[str] = None
    from_expiry: Optional[datetime] = None
    to_expiry: Optional[datetime] = None
    days_extended: Optional[int] = None


def detect_certificate_changes(checks: Sequence[SslCheck]) -> list[CertificateChange]:
    """Changes between consecutive rows; ``checks`` is newest first."""
    changes = []
    for current, previous in zip(checks, checks[1:]):
        if (
            current.serial_number != previous.serial_number
            and current.valid
            and previous.valid
        ):
            extended = None
            if current.days_remaining is not None and previous.days_remaining is not None:
                extended = current.days_remaining - previous.days_remaining
            changes.append(CertificateChange(
                type="renewal",
                checked_at=current.checked_at,
                from_serial=previous.serial_number,
                to_serial=current.serial_number,
                from_expiry=previous.valid_to,
                to_expiry=current.valid_to,
                days_extended=extended,
            ))
        if current.valid and not previous.valid:
            changes.append(CertificateChange(type="became_valid", checked_at=current.checked_at))
        elif previous.valid and not current.valid:
            changes.append(CertificateChange(type="became_invalid", checked_at=current.checked_at))
    return changes


@dataclass
class SslCheckOutcome:
    """What one certificate check produced."""
    info: CertificateInfo
    check: Optional[SslCheck] = None
    changes: list[CertificateChange] = field(default_factory=list)
    alert: Optional[SslExpiryEvent] = None


def site_certificate_summary(site: Site, cached: bool) -> dict[str, Any]:
    """Certificate summary mirrored on the site row."""
    return {
        "site_id": site.id,
        "valid": site.ssl_certificate_valid,
        "issuer": site.ssl_issuer,
        "valid_from": site.ssl_valid_from,
        "expiry_date": site.ssl_expiry_date,
        "days_remaining": site.ssl_days_remaining,
        "last_checked": site.ssl_last_checked,
        "urgency": classify_urgency(site.ssl_days_remaining),
        "cached": cached,
    }


class CertificateTracker:
    """Runs certificate checks for sites and keeps their history."""

    def __init__(self, inspector: Optional[TlsInspector] = None, notifier=None, cache_minutes: Optional[int] = None):
        self.inspector = inspector or tls_inspector
        self._notifier = notifier
        self.cache_minutes = cache_minutes if cache_minutes is not None else settings.ssl_cache_minutes

    @property
    def notifier(self):
        if self._notifier is None:
            from .notifier import notifier
            return notifier
        return self._notifier

    async def recent_checks(self, session: AsyncSession, site_id: int, limit: int = 30) -> list[SslCheck]:
        result = await session.execute(
            select(SslCheck)
            .where(SslCheck.site_id == site_id)
            .order_by(SslCheck.checked_at.desc(), SslCheck.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def check_site(self, session: AsyncSession, site: Site, now: Optional[datetime] = None) -> SslCheckOutcome:
        """Inspect the site's certificate, record it and raise alerts.

        Non-HTTPS sites are reported with ``is_https=False`` and nothing is
        stored.
        """
        now = now or utcnow()
        info = await self.inspector.inspect(site.url)
        if not info.is_https:
            return SslCheckOutcome(info=info)

        previous = await self.recent_checks(session, site.id, limit=1)

        check = SslCheck(
            site_id=site.id,
            organization_id=site.organization_id,
            valid=bool(info.valid) and info.error is None,
            issuer=info.issuer,
            subject=info.subject,
            valid_from=info.valid_from,
            valid_to=info.valid_to,
            days_remaining=info.days_remaining,
            serial_number=info.serial_number,
            fingerprint=info.fingerprint,
            algorithm=info.algorithm,
            authorized=info.authorized,
            authorization_error=info.authorization_error,
            error_message=info.error,
            checked_at=now,
        )
        session.add(check)

        site.ssl_certificate_valid = check.valid
        site.ssl_issuer = info.issuer
        site.ssl_valid_from = info.valid_from
        site.ssl_expiry_date = info.valid_to
        site.ssl_days_remaining = info.days_remaining
        site.ssl_last_checked = now

        alert = None
        threshold = site.ssl_alert_threshold if site.ssl_alert_threshold is not None else 30
        if info.error is None and should_alert(
            info.days_remaining,
            threshold,
            site.ssl_last_alert_at,
            site.ssl_last_alert_days,
            now,
        ):
            site.ssl_last_alert_at = now
            site.ssl_last_alert_days = info.days_remaining
            alert = SslExpiryEvent(
                site_id=site.id,
                organization_id=site.organization_id,
                site_name=site.name,
                days_remaining=info.days_remaining,
                issuer=info.issuer,
                expiry_date=info.valid_to,
                timestamp=now,
            )
        elif info.days_remaining is not None and info.days_remaining > threshold:
            site.ssl_last_alert_at = None
            site.ssl_last_alert_days = None

        await retry_on_lock(session.commit)

        if info.error:
            logger.warning(f"SSL check failed for site {site.id} ({site.url}): {info.error}")
        if alert is not None:
            logger.info(f"SSL expiry alert for site {site.id}: {info.days_remaining} days remaining")
            await self.notifier.publish(alert)

        return SslCheckOutcome(
            info=info,
            check=check,
            changes=detect_certificate_changes([check, *previous]),
            alert=alert,
        )

    async def get_summary(
        self,
        session: AsyncSession,
        site: Site,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> dict[str, Any]:
        """Mirrored summary if fresh enough, otherwise a new check."""
        now = now or utcnow()
        fresh = (
            site.ssl_last_checked is not None
            and now - site.ssl_last_checked < timedelta(minutes=self.cache_minutes)
        )
        if fresh and not force:
            return site_certificate_summary(site, cached=True)

        outcome = await self.check_site(session, site, now)
        summary = site_certificate_summary(site, cached=False)
        summary["is_https"] = outcome.info.is_https
        summary["error"] = outcome.info.error
        return summary

    async def history(self, session: AsyncSession, site: Site, limit: int = 30) -> dict[str, Any]:
        checks = await self.recent_checks(session, site.id, limit)
        return {
            "checks": checks,
            "changes": detect_certificate_changes(checks),
            "total_checks": len(checks),
        }


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


async def ssl_analytics(
    session: AsyncSession,
    organization_id: str,
    days: int = 30,
    now: Optional[datetime] = None,
) -> dict[str, Any]:
    """Organization-wide certificate health over the trailing ``days``."""
    now = now or utcnow()
    start = now - timedelta(days=days)

    sites = list((await session.execute(
        select(Site).where(Site.organization_id == organization_id, Site.ssl_monitoring_enabled.is_(True))
    )).scalars().all())
    checks = list((await session.execute(
        select(SslCheck)
        .where(SslCheck.organization_id == organization_id, SslCheck.checked_at >= start)
        .order_by(SslCheck.checked_at.desc(), SslCheck.id.desc())
    )).scalars().all())

    checks_by_site: dict[int, list[SslCheck]] = defaultdict(list)
    for check in checks:
        checks_by_site[check.site_id].append(check)

    site_details = []
    for site in sites:
        site_checks = checks_by_site.get(site.id, [])
        valid = sum(1 for c in site_checks if c.valid)
        if site_checks:
            uptime = _percent(valid, len(site_checks))
        else:
            uptime = 100.0 if site.ssl_certificate_valid else 0.0
        site_details.append({
            "site_id": site.id,
            "site_name": site.name,
            "site_url": site.url,
            "currently_valid": site.ssl_certificate_valid,
            "days_remaining": site.ssl_days_remaining,
            "expiry_date": site.ssl_expiry_date,
            "issuer": site.ssl_issuer,
            "last_checked": site.ssl_last_checked,
            "uptime": uptime,
            "total_checks": len(site_checks),
            "valid_checks": valid,
            "urgency": classify_urgency(site.ssl_days_remaining),
        })

    by_urgency = {k: 0 for k in ("expired", "critical", "warning", "healthy", "unknown")}
    for detail in site_details:
        by_urgency[detail["urgency"]] += 1

    site_names = {s.id: s.name for s in sites}
    renewals = []
    for site_id, site_checks in checks_by_site.items():
        for change in detect_certificate_changes(site_checks):
            if change.type == "renewal":
                renewals.append({"site_id": site_id, "site_name": site_names.get(site_id, "Unknown"), **vars(change)})

    issuer_counts: dict[str, list[int]] = {}
    daily: dict[str, list[int]] = {}
    for check in checks:
        if check.issuer:
            stats = issuer_counts.setdefault(check.issuer, [0, 0])
            stats[0] += 1
            stats[1] += int(bool(check.valid))
        day = daily.setdefault(check.checked_at.date().isoformat(), [0, 0])
        day[0] += 1
        day[1] += int(bool(check.valid))

    issuers = sorted(
        (
            {"name": name, "count": count, "valid_count": valid, "success_rate": _percent(valid, count)}
            for name, (count, valid) in issuer_counts.items()
        ),
        key=lambda i: i["count"],
        reverse=True,
    )
    timeline = [
        {"date": date, "total": total, "valid": valid, "uptime": _percent(valid, total)}
        for date, (total, valid) in sorted(daily.items())
    ]

    valid_checks = sum(1 for c in checks if c.valid)
    return {
        "period": {"days": days, "start_date": start, "end_date": now},
        "summary": {
            "total_sites": len(sites),
            "organization_ssl_uptime": _percent(valid_checks, len(checks)),
            "total_checks": len(checks),
            "valid_checks": valid_checks,
            "invalid_checks": len(checks) - valid_checks,
        },
        "sites_by_urgency": by_urgency,
        "site_details": site_details,
        "urgent_sites": [d for d in site_details if d["urgency"] == "expired"]
        + [d for d in site_details if d["urgency"] == "critical"],
        "renewals": renewals,
        "issuers": issuers,
        "timeline": timeline,
    }


# Global instance
certificate_tracker = CertificateTracker()
