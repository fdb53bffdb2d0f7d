"""
WebSocket Connection Manager
Tracks notification sockets per user and pushes new notifications to them
"""
from __future__ import annotations

import logging
from typing import Dict, List, Set

from fastapi import WebSocket

from smartmess.core.utils import utcnow

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections keyed by user id."""

    def __init__(self):
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, user_id: str):
        """Accept new WebSocket connection."""
        await websocket.accept()
        self.active_connections.setdefault(user_id, set()).add(websocket)

        await websocket.send_json(
            {
                "type": "connection_established",
                "message": "Connected to SmartMess notifications",
                "timestamp": utcnow().isoformat(),
            }
        )

    def disconnect(self, websocket: WebSocket, user_id: str | None = None):
        """Remove WebSocket connection."""
        user_ids = [user_id] if user_id else list(self.active_connections)
        for uid in user_ids:
            sockets = self.active_connections.get(uid)
            if not sockets:
                continue
            sockets.discard(websocket)
            if not sockets:
                self.active_connections.pop(uid, None)

    def connection_count(self, user_id: str) -> int:
        return len(self.active_connections.get(user_id, ()))

    async def send_to_user(self, user_id: str, event_type: str, data: dict) -> int:
        """Send an event to every socket the user has open. Returns the delivery count."""
        message = {
            "type": event_type,
            "data": data,
            "timestamp": utcnow().isoformat(),
        }

        delivered = 0
        disconnected: List[WebSocket] = []
        for connection in list(self.active_connections.get(user_id, ())):
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception:
                disconnected.append(connection)
        for connection in disconnected:
            logger.debug("Dropping dead notification socket for user %s", user_id)
            self.disconnect(connection, user_id)
        return delivered

    async def send_personal(self, websocket: WebSocket, event_type: str, data: dict):
        """Send message to specific connection."""
        try:
            await websocket.send_json(
                {
                    "type": event_type,
                    "data": data,
                    "timestamp": utcnow().isoformat(),
                }
            )
        except Exception:
            self.disconnect(websocket)


manager = ConnectionManager()
