"""Probe executor - one HTTP liveness check against one site."""
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

import httpx

from ..config import settings
from ..models.enums import SiteStatus
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

USER_AGENT = "SitePulse-HealthCheck/1.0"

# Servers that refuse HEAD are retried with GET
HEAD_FALLBACK_STATUSES = (405, 501)


@dataclass
class ProbeResult:
    """Classified outcome of a probe."""
    status: SiteStatus
    latency_ms: int
    status_code: Optional[int] = None
    error: Optional[str] = None
    region: Optional[str] = None
    checked_at: datetime = field(default_factory=utcnow)

    @property
    def reachable(self) -> bool:
        return self.status != SiteStatus.OFFLINE


def classify_response(
    status_code: int,
    latency_ms: int,
    reason: str = "",
    slow_threshold_ms: Optional[int] = None,
) -> tuple[SiteStatus, Optional[str]]:
    """Map an HTTP response to a verdict.

    2xx/3xx under the slow threshold is ONLINE, above it DEGRADED;
    anything else is OFFLINE with an "HTTP <code> <reason>" message.
    """
    if slow_threshold_ms is None:
        slow_threshold_ms = settings.slow_threshold_ms

    if not (200 <= status_code < 400):
        message = f"HTTP {status_code}"
        if reason:
            message = f"{message} {reason}"
        return SiteStatus.OFFLINE, message

    if latency_ms > slow_threshold_ms:
        return SiteStatus.DEGRADED, f"Slow response: {latency_ms}ms"

    return SiteStatus.ONLINE, None


def describe_transport_error(exc: Exception) -> str:
    """Human readable message for a failed request."""
    if isinstance(exc, httpx.TimeoutException):
        return "Request timeout"
    if isinstance(exc, httpx.ConnectError):
        text = str(exc) or type(exc).__name__
        lowered = text.lower()
        if "name or service not known" in lowered or "nodename nor servname" in lowered or "getaddrinfo" in lowered:
            return f"DNS resolution failed: {text}"
        if "certificate" in lowered or "ssl" in lowered:
            return f"TLS error: {text}"
        return f"Connection error: {text}"
    if isinstance(exc, httpx.TooManyRedirects):
        return "Too many redirects"
    return f"{type(exc).__name__}: {exc}" if str(exc) else type(exc).__name__


class ProbeService:
    """Issues lightweight HTTP requests and classifies the result.

    ``probe`` never raises: every transport failure becomes an OFFLINE
    result so callers always receive a verdict.
    """

    def __init__(
        self,
        timeout: Optional[float] = None,
        slow_threshold_ms: Optional[int] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout if timeout is not None else settings.check_timeout_seconds
        self.slow_threshold_ms = slow_threshold_ms if slow_threshold_ms is not None else settings.slow_threshold_ms
        self._transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            timeout=timeout,
            follow_redirects=True,
            transport=self._transport,
        )

    async def probe(
        self,
        url: str,
        timeout: Optional[float] = None,
        region: Optional[str] = None,
    ) -> ProbeResult:
        """Probe a URL once and return its verdict."""
        timeout = timeout if timeout is not None else self.timeout
        headers = {"User-Agent": USER_AGENT}
        if region:
            headers["User-Agent"] = f"{USER_AGENT} (Region: {region})"
            headers["X-SitePulse-Region"] = region

        checked_at = utcnow()
        start = time.perf_counter()
        try:
            async with self._client(timeout) as client:
                response = await client.head(url, headers=headers)
                if response.status_code in HEAD_FALLBACK_STATUSES:
                    response = await client.get(url, headers=headers)
            latency_ms = int((time.perf_counter() - start) * 1000)
        except Exception as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            error = describe_transport_error(e)
            logger.debug(f"Probe failed for {url}: {error}")
            return ProbeResult(
                status=SiteStatus.OFFLINE,
                latency_ms=latency_ms,
                error=error,
                region=region,
                checked_at=checked_at,
            )

        status, error = classify_response(
            response.status_code,
            latency_ms,
            reason=response.reason_phrase,
            slow_threshold_ms=self.slow_threshold_ms,
        )
        return ProbeResult(
            status=status,
            latency_ms=latency_ms,
            status_code=response.status_code,
            error=error,
            region=region,
            checked_at=checked_at,
        )


# Global instance
probe_service = ProbeService()
