"""
Store contracts consumed by the engine and the scheduler, with
SQLAlchemy-backed implementations.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from autoflow.core.exceptions import PersistenceError
from autoflow.models import ExecutionLog, SystemMetric, Workflow
from autoflow.schemas.execution import ExecutionLogCreate, ExecutionLogSchema
from autoflow.schemas.metrics import SystemMetricSchema
from autoflow.schemas.workflow import WorkflowAction, WorkflowCreate, WorkflowSchema, WorkflowTrigger, WorkflowUpdate


class WorkflowStore(Protocol):
    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowSchema]: ...

    async def get_active_workflows(self) -> list[WorkflowSchema]: ...

    async def update_workflow_status(self, workflow_id: str, status: str) -> Optional[WorkflowSchema]: ...


class ExecutionLogStore(Protocol):
    async def append_log(self, entry: ExecutionLogCreate) -> ExecutionLogSchema: ...

    async def get_recent_logs(self, workflow_id: str, limit: int) -> list[ExecutionLogSchema]: ...


class MetricsStore(Protocol):
    async def record_sample(self, cpu: float, memory: float) -> SystemMetricSchema: ...


def serialize_workflow(row: Workflow) -> WorkflowSchema:
    return WorkflowSchema(
        id=str(row.id),
        name=row.name,
        description=row.description or "",
        trigger=WorkflowTrigger(type=row.trigger_type or "manual", schedule=row.schedule),
        actions=[WorkflowAction(**action) for action in (row.actions or [])],
        status=row.status,
    )


class SqlWorkflowStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def get_workflow(self, workflow_id: str) -> Optional[WorkflowSchema]:
        db = self._session_factory()
        try:
            row = db.query(Workflow).filter(Workflow.id == workflow_id).first()
            return serialize_workflow(row) if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load workflow {workflow_id}: {exc}") from exc
        finally:
            db.close()

    async def list_workflows(self) -> list[WorkflowSchema]:
        db = self._session_factory()
        try:
            rows = db.query(Workflow).order_by(Workflow.created_at.asc(), Workflow.name.asc()).all()
            return [serialize_workflow(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to list workflows: {exc}") from exc
        finally:
            db.close()

    async def get_active_workflows(self) -> list[WorkflowSchema]:
        db = self._session_factory()
        try:
            rows = db.query(Workflow).filter(Workflow.status == "active").all()
            return [serialize_workflow(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to load active workflows: {exc}") from exc
        finally:
            db.close()

    async def create_workflow(self, payload: WorkflowCreate) -> WorkflowSchema:
        db = self._session_factory()
        try:
            row = Workflow(
                name=payload.name,
                description=payload.description,
                trigger_type=payload.trigger.type,
                schedule=payload.trigger.schedule,
                actions=[a.model_dump() for a in payload.actions],
                status=payload.status,
            )
            db.add(row)
            db.commit()
            db.refresh(row)
            return serialize_workflow(row)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to create workflow: {exc}") from exc
        finally:
            db.close()

    async def update_workflow(self, workflow_id: str, payload: WorkflowUpdate) -> Optional[WorkflowSchema]:
        db = self._session_factory()
        try:
            row = db.query(Workflow).filter(Workflow.id == workflow_id).first()
            if not row:
                return None
            if payload.name is not None:
                row.name = payload.name
            if payload.description is not None:
                row.description = payload.description
            if payload.trigger is not None:
                row.trigger_type = payload.trigger.type
                row.schedule = payload.trigger.schedule
            if payload.actions is not None:
                row.actions = [a.model_dump() for a in payload.actions]
            if payload.status is not None:
                row.status = payload.status
            row.updated_at = datetime.now(timezone.utc)
            db.commit()
            db.refresh(row)
            return serialize_workflow(row)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to update workflow {workflow_id}: {exc}") from exc
        finally:
            db.close()

    async def update_workflow_status(self, workflow_id: str, status: str) -> Optional[WorkflowSchema]:
        return await self.update_workflow(workflow_id, WorkflowUpdate(status=status))

    async def delete_workflow(self, workflow_id: str) -> bool:
        db = self._session_factory()
        try:
            deleted = db.query(Workflow).filter(Workflow.id == workflow_id).delete()
            db.commit()
            return bool(deleted)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to delete workflow {workflow_id}: {exc}") from exc
        finally:
            db.close()


class SqlExecutionLogStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def append_log(self, entry: ExecutionLogCreate) -> ExecutionLogSchema:
        db = self._session_factory()
        try:
            row = ExecutionLog(**entry.model_dump())
            db.add(row)
            db.commit()
            db.refresh(row)
            return ExecutionLogSchema.model_validate(row)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to write execution log: {exc}") from exc
        finally:
            db.close()

    async def get_recent_logs(self, workflow_id: str, limit: int = 100) -> list[ExecutionLogSchema]:
        db = self._session_factory()
        try:
            rows = (
                db.query(ExecutionLog)
                .filter(ExecutionLog.workflow_id == workflow_id)
                .order_by(ExecutionLog.execution_time.desc(), ExecutionLog.id.desc())
                .limit(limit)
                .all()
            )
            return [ExecutionLogSchema.model_validate(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read execution logs for {workflow_id}: {exc}") from exc
        finally:
            db.close()

    async def list_recent(self, limit: int = 50, status: Optional[str] = None) -> list[ExecutionLogSchema]:
        db = self._session_factory()
        try:
            query = db.query(ExecutionLog)
            if status:
                query = query.filter(ExecutionLog.status == status)
            rows = query.order_by(ExecutionLog.execution_time.desc(), ExecutionLog.id.desc()).limit(limit).all()
            return [ExecutionLogSchema.model_validate(r) for r in rows]
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read execution logs: {exc}") from exc
        finally:
            db.close()


class SqlMetricsStore:
    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    async def record_sample(self, cpu: float, memory: float) -> SystemMetricSchema:
        db = self._session_factory()
        try:
            row = SystemMetric(cpu_usage=cpu, memory_usage=memory, timestamp=datetime.now(timezone.utc))
            db.add(row)
            db.commit()
            db.refresh(row)
            return SystemMetricSchema.model_validate(row)
        except SQLAlchemyError as exc:
            db.rollback()
            raise PersistenceError(f"Failed to record system metrics: {exc}") from exc
        finally:
            db.close()

    async def get_latest(self) -> Optional[SystemMetricSchema]:
        db = self._session_factory()
        try:
            row = db.query(SystemMetric).order_by(SystemMetric.timestamp.desc(), SystemMetric.id.desc()).first()
            return SystemMetricSchema.model_validate(row) if row else None
        except SQLAlchemyError as exc:
            raise PersistenceError(f"Failed to read system metrics: {exc}") from exc
        finally:
            db.close()


def stats_for_logs(logs: list[ExecutionLogSchema]) -> dict[str, Any]:
    """Success rate summary over terminal log entries."""
    terminal = [log for log in logs if log.status != "running"]
    successes = sum(1 for log in terminal if log.status == "success")
    return {
        "execution_count": len(terminal),
        "success_rate": round(successes / len(terminal) * 100, 2) if terminal else 0.0,
        "last_execution": logs[0].model_dump() if logs else None,
    }
