"""Incident API endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..schemas.incident import IncidentResponse, IncidentUpdate
from ..services.incidents import IncidentAlreadyResolved, IncidentNotFound
from ..services.monitor import monitor_service

router = APIRouter(prefix="/api/incidents", tags=["incidents"])


@router.get("/{incident_id}", response_model=IncidentResponse)
async def get_incident(incident_id: int, db: AsyncSession = Depends(get_db)):
    """Get a single incident."""
    try:
        incident = await monitor_service.get_incident(db, incident_id)
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Incident not found")
    return IncidentResponse.model_validate(incident)


@router.put("/{incident_id}", response_model=IncidentResponse)
async def update_incident(
    incident_id: int,
    update: IncidentUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Edit severity or summary, or resolve the incident by hand."""
    try:
        incident = await monitor_service.update_incident(
            db,
            incident_id,
            status=update.status,
            severity=update.severity,
            summary=update.summary,
            resolved_by=update.resolved_by,
        )
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Incident not found")
    except IncidentAlreadyResolved:
        raise HTTPException(status_code=409, detail="Incident is already resolved")
    return IncidentResponse.model_validate(incident)
