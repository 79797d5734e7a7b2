"""
Workflow execution engine.

Runs one workflow's actions in order against a fresh execution context,
records a ``running`` and a terminal execution log, pushes status
notifications and disables workflows that keep failing.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from autoflow.core.exceptions import (
    ActionError,
    ActionTimeoutError,
    AppError,
    ExecutionCancelledError,
    PersistenceError,
    WorkflowNotActiveError,
    WorkflowNotFoundError,
)
from autoflow.models.execution import ActionResult, ExecutionContext, ExecutionResult
from autoflow.schemas.execution import ExecutionLogCreate
from autoflow.schemas.workflow import WorkflowAction
from autoflow.services.actions import ActionDispatcher
from autoflow.services.notification_service import WORKFLOW_STATUS_EVENT, NotificationSink, notify
from autoflow.services.stores import ExecutionLogStore, WorkflowStore

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return max(0, int((time.monotonic() - started) * 1000))


class WorkflowExecutor:
    """Executes workflows and tracks the executions currently in flight."""

    def __init__(
        self,
        workflow_store: WorkflowStore,
        log_store: ExecutionLogStore,
        dispatcher: ActionDispatcher,
        notifications: Optional[NotificationSink] = None,
        action_timeout: Optional[float] = 300.0,
        failure_window: int = 5,
        failure_threshold: int = 3,
    ):
        self.workflow_store = workflow_store
        self.log_store = log_store
        self.dispatcher = dispatcher
        self.notifications = notifications
        self.action_timeout = action_timeout
        self.failure_window = failure_window
        self.failure_threshold = failure_threshold
        self._running: Dict[str, ExecutionContext] = {}

    async def execute_workflow(self, workflow_id: str) -> ExecutionResult:
        started = time.monotonic()

        try:
            workflow = await self.workflow_store.get_workflow(workflow_id)
            if workflow is None:
                raise WorkflowNotFoundError(workflow_id)
            if workflow.status != "active":
                raise WorkflowNotActiveError(workflow_id, workflow.status)
        except AppError as exc:
            logger.warning("Workflow %s rejected: %s", workflow_id, exc)
            return ExecutionResult(success=False, error=str(exc), duration=_elapsed_ms(started))

        context = ExecutionContext(workflow_id=workflow_id)
        execution_id = context.execution_id
        self._running[execution_id] = context

        try:
            start_message = f"Started execution {execution_id}"
            await self._append_log(workflow_id, "running", start_message, context.start_time, 0)
            await self._notify(workflow_id, "running", start_message)
            logger.info("Starting workflow %s (%s) execution %s", workflow.name, workflow_id, execution_id)

            results: List[ActionResult] = []
            try:
                for index, action in enumerate(workflow.actions, start=1):
                    if context.cancelled:
                        raise ExecutionCancelledError(f"Execution {execution_id} cancelled before action {index}")
                    result = await self.execute_action(action, context)
                    results.append(result)
                    if not result.success:
                        raise ActionError(f"Action {index} ({action.type}) failed: {result.error}")
            except ActionError as exc:
                duration = _elapsed_ms(started)
                error_message = str(exc)
                message = f"Failed execution {execution_id}: {error_message}"
                await self._append_log(workflow_id, "error", message, context.start_time, duration)
                await self._notify(workflow_id, "error", message)
                logger.error("Workflow %s failed: %s", workflow_id, error_message)
                await self.handle_workflow_error(workflow_id)
                return ExecutionResult(
                    success=False,
                    data={"results": results, "execution_id": execution_id},
                    error=error_message,
                    duration=duration,
                    execution_id=execution_id,
                )

            duration = _elapsed_ms(started)
            message = f"Completed execution {execution_id} successfully"
            await self._append_log(workflow_id, "success", message, context.start_time, duration)
            await self._notify(workflow_id, "success", message)
            logger.info("Workflow %s completed in %sms", workflow_id, duration)
            return ExecutionResult(
                success=True,
                data={"results": results, "execution_id": execution_id},
                duration=duration,
                execution_id=execution_id,
            )
        finally:
            self._running.pop(execution_id, None)

    async def execute_action(self, action: WorkflowAction, context: ExecutionContext) -> ActionResult:
        """Run one action; handler errors and timeouts become a failed result."""
        started = time.monotonic()
        raw_timeout = action.parameters.get("timeout", self.action_timeout)
        try:
            timeout = float(raw_timeout) if raw_timeout is not None else None
        except (TypeError, ValueError):
            error = ActionError(f"{action.type} has an invalid timeout: {raw_timeout!r}")
            return ActionResult(success=False, error=str(error), duration=_elapsed_ms(started))
        timeout = timeout or None
        try:
            data = await asyncio.wait_for(
                self.dispatcher.dispatch(action.type, action.parameters, context),
                timeout=timeout,
            )
            return ActionResult(success=True, data=data, duration=_elapsed_ms(started))
        except asyncio.TimeoutError:
            error = ActionTimeoutError(f"{action.type} timed out after {timeout}s")
            return ActionResult(success=False, error=str(error), duration=_elapsed_ms(started))
        except Exception as exc:
            logger.debug("Action %s raised", action.type, exc_info=True)
            return ActionResult(success=False, error=str(exc) or exc.__class__.__name__, duration=_elapsed_ms(started))

    async def handle_workflow_error(self, workflow_id: str) -> bool:
        """Flip the workflow to ``error`` when enough of its recent runs failed."""
        try:
            recent_logs = await self.log_store.get_recent_logs(workflow_id, self.failure_window)
            failures = sum(1 for log in recent_logs if log.status == "error")
            if failures < self.failure_threshold:
                return False
            await self.workflow_store.update_workflow_status(workflow_id, "error")
        except PersistenceError as exc:
            logger.error("Failure escalation for workflow %s could not complete: %s", workflow_id, exc)
            return False

        logger.error(
            "Workflow %s marked as error after %s failures in its last %s executions",
            workflow_id,
            failures,
            len(recent_logs),
        )
        await self._notify(
            workflow_id,
            "error",
            f"Workflow disabled after {failures} recent failures",
            escalated=True,
        )
        return True

    def get_running_executions(self) -> List[ExecutionContext]:
        return list(self._running.values())

    def stop_execution(self, execution_id: str) -> bool:
        """Drop the execution from bookkeeping and ask it to stop before its next action."""
        context = self._running.pop(execution_id, None)
        if context is None:
            return False
        context.cancel_event.set()
        logger.info("Stop requested for execution %s", execution_id)
        return True

    async def _append_log(
        self,
        workflow_id: str,
        status: str,
        message: str,
        execution_time: datetime,
        duration_ms: int,
    ) -> None:
        try:
            await self.log_store.append_log(
                ExecutionLogCreate(
                    workflow_id=workflow_id,
                    status=status,
                    message=message,
                    execution_time=execution_time,
                    duration_ms=duration_ms,
                )
            )
        except PersistenceError as exc:
            logger.error("Execution log (%s) for workflow %s was not saved: %s", status, workflow_id, exc)

    async def _notify(self, workflow_id: str, status: str, message: str, **extra: Any) -> None:
        payload = {
            "workflowId": workflow_id,
            "status": status,
            "message": message,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **extra,
        }
        await notify(self.notifications, WORKFLOW_STATUS_EVENT, payload)
