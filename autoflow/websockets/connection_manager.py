"""
WebSocket Connection Manager
Manages real-time dashboard connections and broadcasts workflow events
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Set

from fastapi import WebSocket

EVENT_TYPES = ("workflow_status", "all")


class ConnectionManager:
    """Manages WebSocket connections and broadcasts."""

    def __init__(self):
        self.active_connections: List[WebSocket] = []
        self.subscribers: Dict[str, Set[WebSocket]] = {event: set() for event in EVENT_TYPES}

    async def connect(self, websocket: WebSocket, subscribe_to: List[str] | None = None):
        """Accept new WebSocket connection."""
        await websocket.accept()
        self.active_connections.append(websocket)

        subscriptions = [e for e in (subscribe_to or []) if e in self.subscribers] or ["all"]
        for event_type in subscriptions:
            self.subscribers[event_type].add(websocket)

        await websocket.send_json(
            {
                "type": "connection_established",
                "message": "Connected to workflow dashboard updates",
                "subscriptions": subscriptions,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            }
        )

    def disconnect(self, websocket: WebSocket):
        """Remove WebSocket connection."""
        if websocket in self.active_connections:
            self.active_connections.remove(websocket)
        for subscribers in self.subscribers.values():
            subscribers.discard(websocket)

    async def broadcast(self, event_type: str, data: dict):
        """Broadcast event to all subscribed connections."""
        message = {
            "type": event_type,
            "data": data,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        recipients = self.subscribers.get(event_type, set()) | self.subscribers.get("all", set())
        disconnected: List[WebSocket] = []
        for connection in recipients:
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.append(connection)
        for connection in disconnected:
            self.disconnect(connection)

    async def send_personal(self, websocket: WebSocket, event_type: str, data: dict):
        """Send message to specific connection."""
        try:
            await websocket.send_json(
                {
                    "type": event_type,
                    "data": data,
                    "timestamp": datetime.now(timezone.utc).isoformat(),
                }
            )
        except Exception:
            self.disconnect(websocket)
