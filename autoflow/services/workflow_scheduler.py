"""
In-process cron scheduler for workflows.

Every active cron workflow gets a ScheduledEntry whose asyncio timer task
sleeps until the next cron fire time and then hands the tick to
``execute_scheduled_workflow``. The entry's ``is_running`` flag keeps a
workflow from overlapping its own scheduled runs.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from typing import Dict, List, Optional, Set
from zoneinfo import ZoneInfo

from croniter import croniter

from autoflow.core.exceptions import InvalidCronExpressionError
from autoflow.models.execution import ExecutionResult
from autoflow.schemas.workflow import WorkflowSchema
from autoflow.services.stores import WorkflowStore
from autoflow.services.workflow_engine import WorkflowExecutor

logger = logging.getLogger(__name__)


def validate_cron_expression(expression: Optional[str]) -> bool:
    """Standard 5-field cron only (minute hour day month weekday)."""
    if not expression or len(expression.split()) != 5:
        return False
    return croniter.is_valid(expression)


def ensure_cron_expression(expression: Optional[str]) -> str:
    if not validate_cron_expression(expression):
        raise InvalidCronExpressionError(f"Invalid cron expression: {expression!r}")
    return expression


def compute_next_run(expression: str, from_dt: datetime) -> Optional[datetime]:
    try:
        return croniter(expression, from_dt).get_next(datetime)
    except (ValueError, KeyError) as exc:
        logger.error("Could not compute next run for %r: %s", expression, exc)
        return None


@dataclass
class ScheduledEntry:
    workflow_id: str
    workflow_name: str
    cron_expression: str
    task: Optional[asyncio.Task] = field(default=None, repr=False)
    is_running: bool = False
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "workflow_id": self.workflow_id,
            "workflow_name": self.workflow_name,
            "cron_expression": self.cron_expression,
            "is_running": self.is_running,
            "last_run": self.last_run.isoformat() if self.last_run else None,
            "next_run": self.next_run.isoformat() if self.next_run else None,
        }


@dataclass
class SchedulerStats:
    total_scheduled_workflows: int
    active_scheduled_workflows: int
    running_executions: int
    last_scheduler_start: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "total_scheduled_workflows": self.total_scheduled_workflows,
            "active_scheduled_workflows": self.active_scheduled_workflows,
            "running_executions": self.running_executions,
            "last_scheduler_start": self.last_scheduler_start.isoformat() if self.last_scheduler_start else None,
        }


class WorkflowScheduler:
    """Owns the table of scheduled entries and their timers."""

    def __init__(
        self,
        executor: WorkflowExecutor,
        workflow_store: WorkflowStore,
        tz: str | tzinfo = "UTC",
        shutdown_grace: float = 10.0,
    ):
        self.executor = executor
        self.workflow_store = workflow_store
        self.tz = ZoneInfo(tz) if isinstance(tz, str) else tz
        self.shutdown_grace = shutdown_grace
        self._entries: Dict[str, ScheduledEntry] = {}
        self._ticks: Set[asyncio.Task] = set()
        # Outlives entry replacement, so a rescheduled workflow keeps its guard.
        self._running_workflow_ids: Set[str] = set()
        self._started = False
        self._start_time: Optional[datetime] = None

    async def start(self) -> None:
        if self._started:
            logger.warning("Workflow scheduler is already started")
            return

        logger.info("Starting workflow scheduler...")
        cron_workflows = await self._load_cron_workflows()
        logger.info("Found %s cron-based workflows to schedule", len(cron_workflows))
        for workflow in cron_workflows:
            await self.schedule_workflow(workflow)

        self._started = True
        self._start_time = datetime.now(timezone.utc)
        logger.info("Workflow scheduler started with %s scheduled workflows", len(self._entries))

    async def stop(self) -> None:
        if not self._started:
            logger.warning("Workflow scheduler is not running")
        for workflow_id in list(self._entries):
            self._cancel_entry(self._entries.pop(workflow_id))
        self._started = False
        self._start_time = None

        if self._ticks:
            logger.info("Waiting up to %ss for %s scheduled runs to finish", self.shutdown_grace, len(self._ticks))
            _, pending = await asyncio.wait(set(self._ticks), timeout=self.shutdown_grace)
            if pending:
                logger.warning("%s scheduled runs still in flight at shutdown", len(pending))
        logger.info("Workflow scheduler stopped")

    async def schedule_workflow(self, workflow: WorkflowSchema) -> bool:
        if workflow.trigger.type != "cron" or not workflow.trigger.schedule:
            logger.warning("Workflow %s is not a cron-based workflow", workflow.id)
            return False
        if workflow.status != "active":
            logger.warning("Workflow %s is not active (status: %s)", workflow.id, workflow.status)
            return False
        try:
            expression = ensure_cron_expression(workflow.trigger.schedule)
        except InvalidCronExpressionError as exc:
            logger.error("Cannot schedule workflow %s: %s", workflow.id, exc)
            return False

        if workflow.id in self._entries:
            await self.unschedule_workflow(workflow.id)

        entry = ScheduledEntry(
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            cron_expression=expression,
            is_running=workflow.id in self._running_workflow_ids,
            next_run=compute_next_run(expression, datetime.now(self.tz)),
        )
        self._entries[workflow.id] = entry
        entry.task = asyncio.create_task(self._run_timer(entry), name=f"cron:{workflow.id}")
        logger.info('Scheduled workflow "%s" (%s) with cron: %s', workflow.name, workflow.id, expression)
        return True

    async def unschedule_workflow(self, workflow_id: str) -> bool:
        entry = self._entries.pop(workflow_id, None)
        if entry is None:
            logger.warning("No scheduled task found for workflow: %s", workflow_id)
            return False
        self._cancel_entry(entry)
        logger.info("Unscheduled workflow: %s", workflow_id)
        return True

    async def reschedule_workflow(self, workflow: WorkflowSchema) -> bool:
        if workflow.id in self._entries:
            await self.unschedule_workflow(workflow.id)
        return await self.schedule_workflow(workflow)

    async def execute_scheduled_workflow(self, workflow_id: str) -> Optional[ExecutionResult]:
        """Run one tick under the overlap guard; None when the tick was skipped."""
        entry = self._entries.get(workflow_id)
        if entry is None:
            logger.error("Scheduled task not found for workflow: %s", workflow_id)
            return None
        if self.is_workflow_running(workflow_id):
            logger.warning("Workflow %s is already running, skipping execution", workflow_id)
            return None

        self._running_workflow_ids.add(workflow_id)
        entry.is_running = True
        entry.last_run = datetime.now(self.tz)
        entry.next_run = compute_next_run(entry.cron_expression, entry.last_run)
        logger.info("Executing scheduled workflow: %s", workflow_id)
        try:
            result = await self.executor.execute_workflow(workflow_id)
            if result.success:
                logger.info("Scheduled workflow %s completed successfully in %sms", workflow_id, result.duration)
            else:
                logger.error("Scheduled workflow %s failed: %s", workflow_id, result.error)
            return result
        except Exception as exc:
            logger.exception("Error executing scheduled workflow %s: %s", workflow_id, exc)
            return ExecutionResult(success=False, error=str(exc) or exc.__class__.__name__)
        finally:
            self._running_workflow_ids.discard(workflow_id)
            entry.is_running = False
            # The entry may have been replaced while the run was in flight.
            current = self._entries.get(workflow_id)
            if current is not None:
                current.is_running = False

    async def trigger_workflow(self, workflow_id: str) -> bool:
        """Run a scheduled workflow now, outside its timetable but under its guard."""
        if workflow_id not in self._entries:
            logger.error("No scheduled task found for workflow: %s", workflow_id)
            return False
        logger.info("Manually triggering scheduled workflow: %s", workflow_id)
        await self.execute_scheduled_workflow(workflow_id)
        return True

    async def reload_workflows(self) -> None:
        if not self._started:
            logger.warning("Workflow scheduler is not running, cannot reload workflows")
            return

        logger.info("Reloading workflows...")
        for workflow_id in list(self._entries):
            self._cancel_entry(self._entries.pop(workflow_id))
        for workflow in await self._load_cron_workflows():
            await self.schedule_workflow(workflow)
        logger.info("Reloaded %s scheduled workflows", len(self._entries))

    def get_scheduled_tasks(self) -> List[ScheduledEntry]:
        return list(self._entries.values())

    def get_scheduled_task(self, workflow_id: str) -> Optional[ScheduledEntry]:
        return self._entries.get(workflow_id)

    def is_running(self) -> bool:
        return self._started

    def is_workflow_running(self, workflow_id: str) -> bool:
        return workflow_id in self._running_workflow_ids

    def get_stats(self) -> SchedulerStats:
        entries = list(self._entries.values())
        return SchedulerStats(
            total_scheduled_workflows=len(entries),
            active_scheduled_workflows=sum(1 for e in entries if not e.is_running),
            running_executions=len(self.executor.get_running_executions()),
            last_scheduler_start=self._start_time,
        )

    async def _load_cron_workflows(self) -> List[WorkflowSchema]:
        workflows = await self.workflow_store.get_active_workflows()
        return [w for w in workflows if w.is_cron]

    async def _run_timer(self, entry: ScheduledEntry) -> None:
        last_fire = datetime.now(self.tz)
        while True:
            now = datetime.now(self.tz)
            # An early wake-up must not fire the same slot twice.
            next_run = compute_next_run(entry.cron_expression, max(now, last_fire))
            if next_run is None:
                return
            entry.next_run = next_run
            await asyncio.sleep(max((next_run - now).total_seconds(), 0))
            last_fire = next_run
            tick = asyncio.create_task(self.execute_scheduled_workflow(entry.workflow_id))
            self._ticks.add(tick)
            tick.add_done_callback(self._ticks.discard)

    @staticmethod
    def _cancel_entry(entry: ScheduledEntry) -> None:
        if entry.task is not None and not entry.task.done():
            entry.task.cancel()
