"""In-memory execution records; only the derived log entries are persisted."""
from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


def new_execution_id() -> str:
    return f"exec_{uuid.uuid4().hex}"


@dataclass
class ExecutionContext:
    workflow_id: str
    execution_id: str = field(default_factory=new_execution_id)
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    variables: dict[str, Any] = field(default_factory=dict)
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event, repr=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()

    def to_dict(self) -> dict[str, Any]:
        return {
            "workflow_id": self.workflow_id,
            "execution_id": self.execution_id,
            "start_time": self.start_time.isoformat(),
            "variables": sorted(self.variables),
            "cancelled": self.cancelled,
        }


@dataclass
class ActionResult:
    success: bool
    data: Any = None
    error: Optional[str] = None
    duration: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {"success": self.success, "data": self.data, "error": self.error, "duration": self.duration}


@dataclass
class ExecutionResult:
    success: bool
    data: Optional[dict[str, Any]] = None
    error: Optional[str] = None
    duration: int = 0
    execution_id: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data = self.data
        if data and "results" in data:
            data = {**data, "results": [r.to_dict() for r in data["results"]]}
        return {
            "success": self.success,
            "data": data,
            "error": self.error,
            "duration": self.duration,
            "execution_id": self.execution_id,
        }
