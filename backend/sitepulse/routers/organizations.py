"""Organization-wide reporting endpoints."""
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..services.ssl_tracker import ssl_analytics

router = APIRouter(prefix="/api/organizations", tags=["organizations"])


@router.get("/{organization_id}/ssl/analytics")
async def get_ssl_analytics(
    organization_id: str,
    days: int = Query(30, ge=1, le=365),
    db: AsyncSession = Depends(get_db),
):
    """Certificate health across every monitored site of an organization."""
    return await ssl_analytics(db, organization_id, days)
