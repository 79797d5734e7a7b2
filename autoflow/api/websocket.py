"""
WebSocket API Endpoints
Real-time workflow status updates for the dashboard
"""
from __future__ import annotations

import json
from typing import List

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    subscribe: List[str] = Query(default=["all"]),
):
    """
    WebSocket endpoint for real-time updates.

    Example:
      ws://localhost:8000/ws?subscribe=workflow_status
    """
    manager = websocket.app.state.connections
    await manager.connect(websocket, subscribe)
    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = json.loads(data)
                if message.get("type") == "ping":
                    await manager.send_personal(websocket, "pong", {"status": "alive"})
            except json.JSONDecodeError:
                continue
    except WebSocketDisconnect:
        manager.disconnect(websocket)
