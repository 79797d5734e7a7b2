from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict


class SystemMetricSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    cpu_usage: float
    memory_usage: float
    timestamp: Optional[datetime] = None
