"""WebSocket connection manager for real-time site and incident updates."""
import asyncio
import json
import logging
from typing import Dict, Set, Any

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections grouped by organization."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, organization_id: str):
        """Accept a new WebSocket connection for an organization."""
        await websocket.accept()
        async with self._lock:
            self.active_connections.setdefault(organization_id, set()).add(websocket)
        logger.info(
            f"WebSocket connected for {organization_id}. Total connections: {self.connection_count}"
        )

    async def disconnect(self, websocket: WebSocket, organization_id: str):
        """Remove a disconnected WebSocket."""
        async with self._lock:
            connections = self.active_connections.get(organization_id)
            if connections is not None:
                connections.discard(websocket)
                if not connections:
                    del self.active_connections[organization_id]
        logger.info(f"WebSocket disconnected. Total connections: {self.connection_count}")

    async def broadcast(self, organization_id: str, message: Dict[str, Any]):
        """Send a message to every client of one organization."""
        async with self._lock:
            connections = list(self.active_connections.get(organization_id, ()))
        if not connections:
            return

        message_json = json.dumps(message, default=str)

        disconnected = []
        for websocket in connections:
            try:
                await websocket.send_text(message_json)
            except Exception as e:
                logger.debug(f"Failed to send to WebSocket: {e}")
                disconnected.append(websocket)

        if disconnected:
            async with self._lock:
                remaining = self.active_connections.get(organization_id)
                if remaining is not None:
                    for ws in disconnected:
                        remaining.discard(ws)
                    if not remaining:
                        del self.active_connections[organization_id]

    @property
    def connection_count(self) -> int:
        """Return the number of active connections across organizations."""
        return sum(len(c) for c in self.active_connections.values())


# Global instance
websocket_manager = ConnectionManager()
