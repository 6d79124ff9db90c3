"""DNS snapshot collector - resolves a fixed set of record types."""
import asyncio
import hashlib
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlsplit

import dns.exception
import dns.resolver

from ..config import settings

logger = logging.getLogger(__name__)

# Record types compared between snapshots, in report order
RECORD_TYPES = ("A", "AAAA", "CNAME", "MX", "NS", "TXT")


@dataclass
class DnsSnapshot:
    """Resolved records for one hostname."""
    hostname: str
    records: dict[str, list[Any]] = field(default_factory=lambda: {t: [] for t in RECORD_TYPES})
    soa: Optional[dict[str, Any]] = None
    resolution_time_ms: int = 0
    success: bool = True
    error: Optional[str] = None
    failed_types: list[str] = field(default_factory=list)

    @property
    def records_hash(self) -> Optional[str]:
        if not self.success:
            return None
        return hash_records(self.records, self.soa)


def hash_records(records: dict[str, list[Any]], soa: Optional[dict[str, Any]]) -> str:
    """Stable SHA-256 over the record sets."""
    payload = {t.lower(): sorted_records(records.get(t) or []) for t in RECORD_TYPES}
    payload["soa"] = soa
    data = json.dumps(payload, sort_keys=True, default=str)
    return hashlib.sha256(data.encode()).hexdigest()


def sorted_records(values: list[Any]) -> list[Any]:
    """Order-insensitive canonical form of a record list."""
    return sorted(values, key=lambda v: json.dumps(v, sort_keys=True, default=str))


def extract_hostname(target: str) -> str:
    target = str(target or "").strip()
    if "://" in target:
        return (urlsplit(target).hostname or "").lower()
    return target.split("/")[0].split(":")[0].lower()


def _rdata_value(record_type: str, rr) -> Any:
    if record_type in ("A", "AAAA"):
        return rr.address
    if record_type in ("CNAME", "NS"):
        return str(rr.target).rstrip(".")
    if record_type == "MX":
        return {"priority": int(rr.preference), "exchange": str(rr.exchange).rstrip(".")}
    if record_type == "TXT":
        return b"".join(rr.strings).decode("utf-8", errors="replace")
    if record_type == "SOA":
        return {
            "mname": str(rr.mname).rstrip("."),
            "rname": str(rr.rname).rstrip("."),
            "serial": int(rr.serial),
            "refresh": int(rr.refresh),
            "retry": int(rr.retry),
            "expire": int(rr.expire),
            "minimum": int(rr.minimum),
        }
    return str(rr)


def _dns_query_sync(*, hostname: str, record_type: str, timeout_seconds: float) -> list[Any]:
    resolver = dns.resolver.Resolver(configure=True)
    resolver.timeout = max(0.5, float(timeout_seconds))
    resolver.lifetime = max(0.5, float(timeout_seconds))
    try:
        answer = resolver.resolve(hostname, record_type)
    except dns.resolver.NoAnswer:
        # No record of this type is a normal outcome
        return []
    return [_rdata_value(record_type, rr) for rr in answer]


class DnsCollector:
    """Resolves A, AAAA, CNAME, MX, NS, TXT and SOA records concurrently."""

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout if timeout is not None else settings.dns_timeout_seconds

    async def _lookup(self, hostname: str, record_type: str) -> list[Any]:
        return await asyncio.wait_for(
            asyncio.to_thread(
                _dns_query_sync,
                hostname=hostname,
                record_type=record_type,
                timeout_seconds=self.timeout,
            ),
            timeout=self.timeout + 1,
        )

    async def snapshot(self, target: str) -> DnsSnapshot:
        """Resolve every tracked record type for ``target``.

        A lookup error leaves that type empty; the snapshot only counts as
        failed when every lookup errored.
        """
        hostname = extract_hostname(target)
        if not hostname:
            return DnsSnapshot(hostname=target, success=False, error="Invalid hostname")

        start = time.perf_counter()
        all_types = RECORD_TYPES + ("SOA",)
        results = await asyncio.gather(
            *[self._lookup(hostname, t) for t in all_types],
            return_exceptions=True,
        )
        elapsed_ms = int((time.perf_counter() - start) * 1000)

        snapshot = DnsSnapshot(hostname=hostname, resolution_time_ms=elapsed_ms)
        errors = []
        for record_type, result in zip(all_types, results):
            if isinstance(result, BaseException):
                if isinstance(result, asyncio.TimeoutError):
                    message = "timeout"
                elif isinstance(result, dns.exception.DNSException):
                    message = result.__class__.__name__
                else:
                    message = f"{type(result).__name__}: {result}"
                errors.append(f"{record_type}: {message}")
                snapshot.failed_types.append(record_type)
                continue
            if record_type == "SOA":
                snapshot.soa = result[0] if result else None
            else:
                snapshot.records[record_type] = result

        if errors:
            snapshot.error = "; ".join(errors)
        if len(errors) == len(all_types):
            snapshot.success = False
            logger.warning(f"DNS resolution failed for {hostname}: {snapshot.error}")
        return snapshot


# Global instance
dns_collector = DnsCollector()
