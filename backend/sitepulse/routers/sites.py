"""Site check API endpoints: checks, regions, certificates and DNS."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Check, Site
from ..schemas.site import (
    CheckResponse,
    SiteStatusResponse,
    CheckNowResponse,
    CheckHistoryResponse,
    RegionCheckRequest,
    RegionCheckResponse,
    RegionHistoryResponse,
    RegionResult,
    RegionStatResponse,
    RegionSummaryResponse,
    CheckSessionResponse,
)
from ..schemas.ssl import (
    SslSummaryResponse,
    SslCheckResponse,
    SslCheckRunResponse,
    SslHistoryResponse,
    CertificateChangeResponse,
    DnsCheckResponse,
    DnsHistoryResponse,
    DnsStatistics,
)
from ..services.dns_tracker import dns_statistics
from ..services.incidents import IncidentPersistenceError
from ..services.monitor import monitor_service
from ..services.regions import REGIONS, group_checks_by_session, resolve_regions

router = APIRouter(prefix="/api/sites", tags=["sites"])


async def _get_site(db: AsyncSession, site_id: int) -> Site:
    site = await db.get(Site, site_id)
    if site is None:
        raise HTTPException(status_code=404, detail="Site not found")
    return site


def _region_stat(region_id: str, response_time: int = 0) -> RegionStatResponse:
    info = REGIONS[region_id]
    return RegionStatResponse(
        region=region_id,
        name=info.name,
        location=info.location,
        response_time=response_time,
    )


@router.post("/{site_id}/check", response_model=CheckNowResponse)
async def check_site_now(site_id: int, db: AsyncSession = Depends(get_db)):
    """Probe a site immediately and apply the verdict."""
    site = await _get_site(db, site_id)
    try:
        outcome = await monitor_service.check_site(db, site, run_trackers=False)
    except IncidentPersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    verdict = outcome.verdict
    return CheckNowResponse(
        site=SiteStatusResponse.model_validate(site),
        check=CheckResponse.model_validate(verdict.check),
        previous_status=verdict.previous_status,
        incident_action=verdict.transition.action.value,
        incident_id=verdict.incident.incident.id if verdict.incident else None,
    )


@router.get("/{site_id}/checks", response_model=CheckHistoryResponse)
async def get_check_history(
    site_id: int,
    limit: int = Query(50, ge=1, le=1000),
    region: Optional[str] = Query(None, description="Only checks from this region"),
    db: AsyncSession = Depends(get_db),
):
    """Recent primary checks, newest first."""
    await _get_site(db, site_id)

    conditions = [Check.site_id == site_id]
    if region:
        conditions.append(Check.region == region.upper())
    else:
        conditions.append(Check.region.is_(None))

    total = await db.scalar(select(func.count(Check.id)).where(*conditions))
    result = await db.execute(
        select(Check).where(*conditions).order_by(Check.checked_at.desc(), Check.id.desc()).limit(limit)
    )
    checks = result.scalars().all()
    return CheckHistoryResponse(
        checks=[CheckResponse.model_validate(c) for c in checks],
        total=total or 0,
    )


@router.get("/{site_id}/regions", response_model=RegionHistoryResponse)
async def get_region_checks(
    site_id: int,
    limit: int = Query(100, ge=1, le=1000),
    db: AsyncSession = Depends(get_db),
):
    """Recent multi-region checks grouped into sessions."""
    site = await _get_site(db, site_id)
    result = await db.execute(
        select(Check)
        .where(Check.site_id == site_id, Check.region.is_not(None))
        .order_by(Check.checked_at.desc(), Check.id.desc())
        .limit(limit)
    )
    sessions = group_checks_by_session(result.scalars().all())
    return RegionHistoryResponse(
        available_regions=[_region_stat(r) for r in REGIONS],
        configured_regions=resolve_regions(site.regions),
        sessions=[
            CheckSessionResponse(
                timestamp=s.timestamp,
                checks=[CheckResponse.model_validate(c) for c in s.checks],
            )
            for s in sessions
        ],
    )


@router.post("/{site_id}/regions", response_model=RegionCheckResponse)
async def run_region_check(
    site_id: int,
    request: Optional[RegionCheckRequest] = None,
    db: AsyncSession = Depends(get_db),
):
    """Probe a site from several regions at once."""
    site = await _get_site(db, site_id)
    request = request or RegionCheckRequest()
    try:
        outcome = await monitor_service.run_region_check(
            db, site, request.regions, apply_verdict=request.apply_verdict
        )
    except IncidentPersistenceError as e:
        raise HTTPException(status_code=500, detail=str(e))

    summary = outcome.summary
    return RegionCheckResponse(
        checked_at=outcome.checked_at,
        results=[
            RegionResult(
                region=r.region,
                name=REGIONS[r.region].name,
                location=REGIONS[r.region].location,
                success=r.success,
                status=r.status.value,
                response_time=r.latency_ms,
                status_code=r.status_code,
                error_message=r.error,
            )
            for r in outcome.results
        ],
        summary=RegionSummaryResponse(
            average_response_time=summary.average_response_time,
            fastest_region=_region_stat(summary.fastest_region.region, summary.fastest_region.response_time)
            if summary.fastest_region else None,
            slowest_region=_region_stat(summary.slowest_region.region, summary.slowest_region.response_time)
            if summary.slowest_region else None,
            overall_status=summary.overall_status.value,
            regions_checked=summary.regions_checked,
            successful_checks=summary.successful_checks,
        ),
        incident_action=outcome.verdict.transition.action.value if outcome.verdict else None,
    )


@router.post("/{site_id}/ssl/check", response_model=SslCheckRunResponse)
async def run_ssl_check(site_id: int, db: AsyncSession = Depends(get_db)):
    """Inspect the site's certificate now."""
    site = await _get_site(db, site_id)
    outcome = await monitor_service.certificates.check_site(db, site)
    if not outcome.info.is_https:
        raise HTTPException(status_code=400, detail=outcome.info.error or "Not an HTTPS URL")

    return SslCheckRunResponse(
        is_https=True,
        check=SslCheckResponse.model_validate(outcome.check),
        changes=[CertificateChangeResponse.model_validate(c) for c in outcome.changes],
        alert_sent=outcome.alert is not None,
        error=outcome.info.error,
    )


@router.get("/{site_id}/ssl", response_model=SslSummaryResponse)
async def get_ssl_summary(
    site_id: int,
    force: bool = Query(False, description="Ignore the cached summary"),
    db: AsyncSession = Depends(get_db),
):
    """Certificate summary, re-checked when stale."""
    site = await _get_site(db, site_id)
    summary = await monitor_service.certificates.get_summary(db, site, force=force)
    return SslSummaryResponse(**summary)


@router.get("/{site_id}/ssl/history", response_model=SslHistoryResponse)
async def get_ssl_history(
    site_id: int,
    limit: int = Query(30, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Certificate checks with renewals and validity changes."""
    site = await _get_site(db, site_id)
    history = await monitor_service.certificates.history(db, site, limit)
    return SslHistoryResponse(
        checks=[SslCheckResponse.model_validate(c) for c in history["checks"]],
        changes=[CertificateChangeResponse.model_validate(c) for c in history["changes"]],
        total_checks=history["total_checks"],
    )


@router.get("/{site_id}/dns", response_model=DnsHistoryResponse)
async def get_dns_history(
    site_id: int,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """Stored DNS snapshots, newest first, with record statistics."""
    await _get_site(db, site_id)
    history = await monitor_service.dns.history(db, site_id, limit)
    latest = history[0] if history else None
    return DnsHistoryResponse(
        latest=DnsCheckResponse.model_validate(latest) if latest else None,
        history=[DnsCheckResponse.model_validate(c) for c in history],
        statistics=DnsStatistics(**dns_statistics(latest)) if latest else None,
    )


@router.post("/{site_id}/dns", response_model=DnsCheckResponse)
async def run_dns_check(site_id: int, db: AsyncSession = Depends(get_db)):
    """Resolve the site's records now and diff against the last snapshot."""
    site = await _get_site(db, site_id)
    row = await monitor_service.dns.check_site(db, site)
    return DnsCheckResponse.model_validate(row)
