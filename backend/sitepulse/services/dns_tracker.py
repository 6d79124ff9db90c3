"""DNS change detector - diffs successive snapshots of a site's records."""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import settings
from ..models import DnsCheck, Site
from ..utils.db_utils import retry_on_lock
from ..utils.time import utcnow
from .dns_collector import RECORD_TYPES, DnsCollector, DnsSnapshot, dns_collector, hash_records, sorted_records

logger = logging.getLogger(__name__)

# DnsCheck column holding each record type
RECORD_COLUMNS = {t: f"{t.lower()}_records" for t in RECORD_TYPES}


def records_of(check: DnsCheck) -> dict[str, list[Any]]:
    return {t: list(getattr(check, column) or []) for t, column in RECORD_COLUMNS.items()}


def _key(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def detect_dns_changes(
    current: dict[str, list[Any]],
    previous: Optional[dict[str, list[Any]]],
    skip_types: Iterable[str] = (),
) -> list[dict[str, Any]]:
    """Per-type differences between two record sets, ignoring order.

    No previous snapshot means nothing changed.
    """
    if previous is None:
        return []
    skip = set(skip_types)

    changes = []
    for record_type in RECORD_TYPES:
        if record_type in skip:
            continue
        now_values = sorted_records(current.get(record_type) or [])
        was_values = sorted_records(previous.get(record_type) or [])
        if now_values == was_values:
            continue

        now_keys = {_key(v): v for v in now_values}
        was_keys = {_key(v): v for v in was_values}
        changes.append({
            "type": record_type,
            "previous": was_values,
            "current": now_values,
            "added": [v for k, v in now_keys.items() if k not in was_keys],
            "removed": [v for k, v in was_keys.items() if k not in now_keys],
        })
    return changes


def dns_statistics(check: DnsCheck) -> dict[str, Any]:
    """Record counts for one stored snapshot."""
    records = records_of(check)
    counts = {t: len(values) for t, values in records.items()}
    return {
        "total_records": sum(counts.values()),
        "record_types": counts,
        "has_ipv6": counts["AAAA"] > 0,
        "has_mail_servers": counts["MX"] > 0,
        "nameserver_count": counts["NS"],
    }


class DnsMonitor:
    """Collects snapshots for a site and stores them with their diff."""

    def __init__(self, collector: Optional[DnsCollector] = None, interval_minutes: Optional[int] = None):
        self.collector = collector or dns_collector
        self.interval_minutes = (
            interval_minutes if interval_minutes is not None else settings.dns_check_interval_minutes
        )

    def is_due(self, site: Site, now: datetime) -> bool:
        if site.dns_last_checked is None:
            return True
        return now - site.dns_last_checked >= timedelta(minutes=self.interval_minutes)

    async def latest(self, session: AsyncSession, site_id: int, successful_only: bool = False) -> Optional[DnsCheck]:
        query = select(DnsCheck).where(DnsCheck.site_id == site_id)
        if successful_only:
            query = query.where(DnsCheck.success.is_(True))
        result = await session.execute(
            query.order_by(DnsCheck.checked_at.desc(), DnsCheck.id.desc()).limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, session: AsyncSession, site_id: int, limit: int = 10) -> list[DnsCheck]:
        result = await session.execute(
            select(DnsCheck)
            .where(DnsCheck.site_id == site_id)
            .order_by(DnsCheck.checked_at.desc(), DnsCheck.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    def _build_row(
        self,
        site: Site,
        snapshot: DnsSnapshot,
        previous: Optional[DnsCheck],
        now: datetime,
    ) -> DnsCheck:
        records = {t: list(snapshot.records.get(t) or []) for t in RECORD_TYPES}
        soa = snapshot.soa
        unresolved = [t for t in snapshot.failed_types if t in RECORD_COLUMNS]
        changes: list[dict[str, Any]] = []
        if snapshot.success and previous is not None:
            baseline = records_of(previous)
            # A type the baseline never resolved has nothing to compare against
            skip = set(snapshot.failed_types) | set(previous.unresolved_types or [])
            changes = detect_dns_changes(records, baseline, skip)

            # Types that failed this time keep the last known values
            for record_type in unresolved[:]:
                if record_type not in (previous.unresolved_types or []):
                    records[record_type] = baseline[record_type]
                    unresolved.remove(record_type)
            if "SOA" in snapshot.failed_types:
                soa = previous.soa_record

        row = DnsCheck(
            site_id=site.id,
            hostname=snapshot.hostname,
            resolution_time=snapshot.resolution_time_ms,
            soa_record=soa,
            records_hash=hash_records(records, soa) if snapshot.success else None,
            previous_hash=previous.records_hash if previous is not None else None,
            changes_detected=bool(changes),
            changes=changes,
            success=snapshot.success,
            error_message=snapshot.error,
            unresolved_types=unresolved,
            checked_at=now,
        )
        for record_type, column in RECORD_COLUMNS.items():
            setattr(row, column, records[record_type])
        return row

    async def check_site(self, session: AsyncSession, site: Site, now: Optional[datetime] = None) -> DnsCheck:
        """Snapshot the site's hostname, diff against the last good snapshot, store it."""
        now = now or utcnow()
        snapshot = await self.collector.snapshot(site.url)
        previous = await self.latest(session, site.id, successful_only=True)

        row = self._build_row(site, snapshot, previous, now)
        session.add(row)
        site.dns_last_checked = now
        await retry_on_lock(session.commit)

        if row.changes_detected:
            changed = ", ".join(c["type"] for c in row.changes)
            logger.info(f"DNS changes detected for site {site.id} ({snapshot.hostname}): {changed}")
        elif not snapshot.success:
            logger.warning(f"DNS check failed for site {site.id}: {snapshot.error}")
        return row


# Global instance
dns_monitor = DnsMonitor()
