from __future__ import annotations

from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, field_validator

ACTION_TYPES = (
    "fetch_data",
    "generate_report",
    "send_email",
    "check_system_metrics",
    "log_result",
)
TriggerType = Literal["manual", "cron", "event"]
WorkflowStatus = Literal["active", "paused", "error"]


def check_action_types(actions: Optional[list[WorkflowAction]]) -> Optional[list[WorkflowAction]]:
    for action in actions or []:
        if action.type not in ACTION_TYPES:
            raise ValueError(f"Unknown action type: {action.type}")
    return actions


class WorkflowTrigger(BaseModel):
    type: TriggerType = "manual"
    schedule: Optional[str] = None


class WorkflowAction(BaseModel):
    # Open string so stored definitions with unknown kinds fail at dispatch time.
    type: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class WorkflowSchema(BaseModel):
    """Workflow definition as seen by the engine and the scheduler."""

    id: str
    name: str
    description: str = ""
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    actions: list[WorkflowAction] = Field(default_factory=list)
    status: WorkflowStatus = "active"

    @property
    def is_cron(self) -> bool:
        return self.trigger.type == "cron" and bool(self.trigger.schedule)


class WorkflowCreate(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    description: str = ""
    trigger: WorkflowTrigger = Field(default_factory=WorkflowTrigger)
    actions: list[WorkflowAction] = Field(default_factory=list)
    status: WorkflowStatus = "active"

    @field_validator("actions")
    @classmethod
    def validate_actions(cls, value: list[WorkflowAction]) -> list[WorkflowAction]:
        """Reject action kinds the engine cannot dispatch."""
        return check_action_types(value)


class WorkflowUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    trigger: Optional[WorkflowTrigger] = None
    actions: Optional[list[WorkflowAction]] = None
    status: Optional[WorkflowStatus] = None

    @field_validator("actions")
    @classmethod
    def validate_actions(cls, value: Optional[list[WorkflowAction]]) -> Optional[list[WorkflowAction]]:
        return check_action_types(value)
