from __future__ import annotations

from typing import Any, Protocol

from autoflow.core.logger import get_logger
from autoflow.websockets.connection_manager import ConnectionManager

logger = get_logger(__name__)

WORKFLOW_STATUS_EVENT = "workflow_status"


class NotificationSink(Protocol):
    async def emit(self, event: str, payload: dict[str, Any]) -> None: ...


class WebSocketNotificationSink:
    """Pushes engine events to dashboard WebSocket subscribers."""

    def __init__(self, connections: ConnectionManager):
        self.connections = connections

    async def emit(self, event: str, payload: dict[str, Any]) -> None:
        logger.debug("Notification event=%s payload=%s", event, payload)
        await self.connections.broadcast(event, payload)


async def notify(sink: NotificationSink | None, event: str, payload: dict[str, Any]) -> None:
    """Best-effort delivery: a missing or failing sink never affects the caller."""
    if sink is None:
        return
    try:
        await sink.emit(event, payload)
    except Exception as exc:
        logger.warning("Notification %s dropped: %s", event, exc)
