from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict

ExecutionStatus = Literal["running", "success", "error"]


class ExecutionLogCreate(BaseModel):
    workflow_id: str
    status: ExecutionStatus
    message: str
    execution_time: datetime
    duration_ms: Optional[int] = None


class ExecutionLogSchema(ExecutionLogCreate):
    model_config = ConfigDict(from_attributes=True)

    id: int
