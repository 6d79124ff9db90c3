"""Notification settings API endpoints."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..database import get_db
from ..models import Setting
from ..models.settings import DEFAULT_SETTINGS
from ..schemas.settings import SettingsResponse, SettingsUpdate
from ..services.email_sender import email_sender_service, EmailConfig
from ..services.notifier import notifier
from ..utils.db_utils import retry_on_lock
from ..utils.time import utcnow

router = APIRouter(prefix="/api/settings", tags=["settings"])


async def get_all_settings(db: AsyncSession) -> dict:
    """Get all settings as a dictionary."""
    result = await db.execute(select(Setting))
    settings_dict = dict(DEFAULT_SETTINGS)
    for setting in result.scalars().all():
        settings_dict[setting.key] = setting.value
    return settings_dict


def _bool_from_str(val: str) -> bool:
    """Convert string '0'/'1' to bool."""
    return val == "1" or val.lower() == "true"


def _build_settings_response(settings_dict: dict) -> SettingsResponse:
    """Build a SettingsResponse from a settings dictionary."""
    return SettingsResponse(
        webhook_url=settings_dict.get("webhook_url") or None,
        webhook_secret_set=bool(settings_dict.get("webhook_secret")),
        webhook_events=settings_dict.get("webhook_events", ""),
        email_alerts_enabled=_bool_from_str(settings_dict.get("email_alerts_enabled", "0")),
        email_on_incident_created=_bool_from_str(settings_dict.get("email_on_incident_created", "1")),
        email_on_incident_resolved=_bool_from_str(settings_dict.get("email_on_incident_resolved", "1")),
        email_on_ssl_expiring=_bool_from_str(settings_dict.get("email_on_ssl_expiring", "1")),
        smtp_host=settings_dict.get("smtp_host") or None,
        smtp_port=int(settings_dict.get("smtp_port") or 587),
        smtp_username=settings_dict.get("smtp_username") or None,
        smtp_use_tls=_bool_from_str(settings_dict.get("smtp_use_tls", "1")),
        alert_email_from=settings_dict.get("alert_email_from") or None,
        alert_email_to=settings_dict.get("alert_email_to") or None,
    )


@router.get("", response_model=SettingsResponse)
async def get_settings(db: AsyncSession = Depends(get_db)):
    """Get notification settings. Secrets are never returned."""
    return _build_settings_response(await get_all_settings(db))


@router.put("", response_model=SettingsResponse)
async def update_settings(update: SettingsUpdate, db: AsyncSession = Depends(get_db)):
    """Update settings."""
    updates = update.model_dump(exclude_unset=True)

    for key, value in updates.items():
        if value is None:
            continue
        # Bools are stored as "0"/"1"
        store_value = ("1" if value else "0") if isinstance(value, bool) else str(value)

        setting = await db.get(Setting, key)
        if setting:
            setting.value = store_value
        else:
            db.add(Setting(key=key, value=store_value))

    await retry_on_lock(db.commit)
    return _build_settings_response(await get_all_settings(db))


@router.post("/test-email")
async def test_email(db: AsyncSession = Depends(get_db)):
    """Send a test email to verify SMTP configuration."""
    settings_dict = await get_all_settings(db)

    if not _bool_from_str(settings_dict.get("email_alerts_enabled", "0")):
        raise HTTPException(status_code=400, detail="Email alerts are not enabled")
    if not settings_dict.get("smtp_host"):
        raise HTTPException(status_code=400, detail="SMTP host is not configured")
    if not settings_dict.get("alert_email_to"):
        raise HTTPException(status_code=400, detail="Alert email (To) is not configured")

    config = EmailConfig.from_settings(settings_dict)
    body = "\n".join([
        "SitePulse Test Email",
        "=" * 40,
        "",
        "If you received this, SMTP is configured correctly.",
        f"Time: {utcnow().strftime('%Y-%m-%d %H:%M:%S UTC')}",
    ])
    if not await email_sender_service.send_email(config, "SitePulse test email", body):
        raise HTTPException(status_code=502, detail="Failed to send test email, check server logs")
    return {"success": True, "message": f"Test email sent to {config.to_address}"}


@router.post("/test-webhook")
async def test_webhook(db: AsyncSession = Depends(get_db)):
    """Send a signed test payload to the configured webhook."""
    settings_dict = await get_all_settings(db)
    url = settings_dict.get("webhook_url")
    if not url:
        raise HTTPException(status_code=400, detail="Webhook URL is not configured")

    payload = {
        "event": "test",
        "timestamp": utcnow().isoformat() + "Z",
        "data": {"message": "SitePulse webhook test"},
    }
    if not await notifier.send_webhook(url, payload, settings_dict.get("webhook_secret") or None):
        raise HTTPException(status_code=502, detail="Webhook delivery failed")
    return {"success": True}
