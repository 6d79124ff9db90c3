"""Main FastAPI application."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware

from .config import settings
from .database import init_db, close_db
from .routers import sites_router, incidents_router, organizations_router, cron_router, settings_router
from .services.scheduler import scheduler_service
from .services.websocket_manager import websocket_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan - startup and shutdown."""
    logger.info("Starting SitePulse")

    await init_db()
    logger.info("Database initialized")

    if settings.scheduler_enabled:
        scheduler_service.start()

    yield

    scheduler_service.stop()
    await close_db()
    logger.info("Shutdown complete")


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="SitePulse",
        description="Site health checks, multi-region probing, certificate and DNS tracking with incident lifecycle",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # In production, restrict to your domain
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(sites_router)
    app.include_router(incidents_router)
    app.include_router(organizations_router)
    app.include_router(cron_router)
    app.include_router(settings_router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "scheduler": settings.scheduler_enabled,
            "websocket_connections": websocket_manager.connection_count,
        }

    @app.websocket("/ws/{organization_id}")
    async def organization_updates(websocket: WebSocket, organization_id: str):
        """Live site verdicts and incident events for one organization."""
        await websocket_manager.connect(websocket, organization_id)
        try:
            while True:
                # Clients only listen; incoming text is a keepalive
                await websocket.receive_text()
        except WebSocketDisconnect:
            pass
        finally:
            await websocket_manager.disconnect(websocket, organization_id)

    return app


# Create the application instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=settings.web_port)
