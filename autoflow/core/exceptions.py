"""Custom exception types for the engine, scheduler and API layers."""


class AppError(Exception):
    """Base app exception."""


class ValidationError(AppError):
    """Validation failure for workflow definitions or action parameters."""


class InvalidCronExpressionError(ValidationError):
    """Cron expression is not a valid 5-field schedule."""


class WorkflowNotFoundError(ValidationError):
    """Workflow id does not exist in the store."""

    def __init__(self, workflow_id: str):
        super().__init__(f"Workflow {workflow_id} not found")
        self.workflow_id = workflow_id


class WorkflowNotActiveError(ValidationError):
    """Workflow exists but its status does not allow execution."""

    def __init__(self, workflow_id: str, status: str):
        super().__init__(f"Workflow {workflow_id} is not active (status: {status})")
        self.workflow_id = workflow_id
        self.status = status


class ActionError(AppError):
    """A single action handler failed."""


class MissingParameterError(ValidationError, ActionError):
    """Required action parameter was not supplied."""


class ActionTimeoutError(ActionError):
    """Action did not finish within its time limit."""


class ExecutionCancelledError(ActionError):
    """Execution was stopped before the next action was dispatched."""


class PersistenceError(AppError):
    """Store read or write failure."""
