"""API routers."""
from .sites import router as sites_router
from .incidents import router as incidents_router
from .organizations import router as organizations_router
from .cron import router as cron_router
from .settings import router as settings_router

__all__ = ["sites_router", "incidents_router", "organizations_router", "cron_router", "settings_router"]
