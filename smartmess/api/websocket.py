"""
WebSocket API Endpoints
Real-time notification delivery
"""
from __future__ import annotations

import json
from typing import Optional

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect, status

from smartmess.core.exceptions import AuthenticationError
from smartmess.core.logger import get_logger
from smartmess.core.security import user_from_token
from smartmess.database import SessionLocal
from smartmess.websockets.connection_manager import manager

router = APIRouter()
logger = get_logger(__name__)


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket, token: Optional[str] = Query(default=None)):
    """
    Notification stream for the authenticated user.

    Example:
      ws://localhost:8000/ws/notifications?token=<access token>
    """
    with SessionLocal() as db:
        try:
            user_id = str(user_from_token(db, token).id)
        except AuthenticationError as exc:
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION, reason=exc.message)
            return

    try:
        await manager.connect(websocket, user_id)
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
            except json.JSONDecodeError:
                continue
            if isinstance(message, dict) and message.get("type") == "ping":
                await manager.send_personal(websocket, "pong", {"status": "alive"})
    except WebSocketDisconnect:
        logger.debug("Notification socket closed for user %s", user_id)
    finally:
        manager.disconnect(websocket, user_id)
