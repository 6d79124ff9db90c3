"""Cron trigger for external schedulers."""
import hmac
import logging
from typing import Optional

from fastapi import APIRouter, Header, HTTPException

from ..config import settings
from ..services.scheduler import scheduler_service
from ..utils.time import utcnow

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _authorized(authorization: Optional[str]) -> bool:
    if not settings.cron_secret:
        return True
    expected = f"Bearer {settings.cron_secret}"
    return hmac.compare_digest((authorization or "").encode(), expected.encode())


@router.post("/monitor")
async def run_monitor_sweep(authorization: Optional[str] = Header(None)):
    """Check every due site now, same as a scheduler tick."""
    if not _authorized(authorization):
        raise HTTPException(status_code=401, detail="Unauthorized")

    started = utcnow()
    counts = await scheduler_service.run_due_checks()
    logger.info(f"Cron sweep: {counts['checked']} checked, {counts['failed']} failed")
    return {
        "success": True,
        "checked": counts["checked"],
        "failed": counts["failed"],
        "started_at": started,
        "finished_at": utcnow(),
    }
