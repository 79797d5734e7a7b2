from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from autoflow.api.dependencies import get_executor, get_log_store
from autoflow.services.stores import SqlExecutionLogStore
from autoflow.services.workflow_engine import WorkflowExecutor

router = APIRouter()


@router.get("/")
async def list_executions(
    limit: int = 100,
    status: Optional[str] = None,
    logs: SqlExecutionLogStore = Depends(get_log_store),
):
    return [log.model_dump() for log in await logs.list_recent(limit, status)]


@router.get("/running")
async def running_executions(executor: WorkflowExecutor = Depends(get_executor)):
    return [context.to_dict() for context in executor.get_running_executions()]


@router.post("/{execution_id}/stop")
async def stop_execution(execution_id: str, executor: WorkflowExecutor = Depends(get_executor)):
    if not executor.stop_execution(execution_id):
        raise HTTPException(status_code=404, detail="Execution not found")
    return {"success": True, "execution_id": execution_id}
