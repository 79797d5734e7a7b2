from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from autoflow.api.dependencies import get_executor, get_log_store, get_scheduler, get_workflow_store
from autoflow.core.exceptions import InvalidCronExpressionError
from autoflow.schemas.workflow import WorkflowCreate, WorkflowSchema, WorkflowUpdate
from autoflow.services.stores import SqlExecutionLogStore, SqlWorkflowStore, stats_for_logs
from autoflow.services.workflow_engine import WorkflowExecutor
from autoflow.services.workflow_scheduler import WorkflowScheduler, ensure_cron_expression

router = APIRouter()


def _ensure_valid_schedule(trigger_type: str, schedule: str | None) -> None:
    if trigger_type != "cron":
        return
    try:
        ensure_cron_expression(schedule)
    except InvalidCronExpressionError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


async def _sync_schedule(scheduler: WorkflowScheduler, workflow: WorkflowSchema) -> None:
    if workflow.is_cron and workflow.status == "active":
        await scheduler.reschedule_workflow(workflow)
    elif scheduler.get_scheduled_task(workflow.id):
        await scheduler.unschedule_workflow(workflow.id)


async def _load_or_404(store: SqlWorkflowStore, workflow_id: str) -> WorkflowSchema:
    workflow = await store.get_workflow(workflow_id)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    return workflow


@router.get("/")
async def get_workflows(store: SqlWorkflowStore = Depends(get_workflow_store)):
    return [w.model_dump() for w in await store.list_workflows()]


@router.post("/", status_code=201)
async def post_workflow(
    payload: WorkflowCreate,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    _ensure_valid_schedule(payload.trigger.type, payload.trigger.schedule)
    workflow = await store.create_workflow(payload)
    await _sync_schedule(scheduler, workflow)
    return workflow.model_dump()


@router.get("/{workflow_id}")
async def workflow_detail(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    logs: SqlExecutionLogStore = Depends(get_log_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    workflow = await _load_or_404(store, workflow_id)
    entry = scheduler.get_scheduled_task(workflow_id)
    return {
        **workflow.model_dump(),
        **stats_for_logs(await logs.get_recent_logs(workflow_id, 100)),
        "schedule": entry.to_dict() if entry else None,
    }


@router.put("/{workflow_id}")
async def put_workflow(
    workflow_id: str,
    payload: WorkflowUpdate,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    if payload.trigger is not None:
        _ensure_valid_schedule(payload.trigger.type, payload.trigger.schedule)
    workflow = await store.update_workflow(workflow_id, payload)
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    await _sync_schedule(scheduler, workflow)
    return workflow.model_dump()


@router.delete("/{workflow_id}")
async def delete_workflow(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    if not await store.delete_workflow(workflow_id):
        raise HTTPException(status_code=404, detail="Workflow not found")
    if scheduler.get_scheduled_task(workflow_id):
        await scheduler.unschedule_workflow(workflow_id)
    return {"success": True, "workflow_id": workflow_id}


@router.post("/{workflow_id}/execute")
async def workflow_execute(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    executor: WorkflowExecutor = Depends(get_executor),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    await _load_or_404(store, workflow_id)
    if scheduler.get_scheduled_task(workflow_id) is not None:
        # Scheduled workflows run under the scheduler's overlap guard.
        result = await scheduler.execute_scheduled_workflow(workflow_id)
        if result is None:
            raise HTTPException(status_code=409, detail="Workflow is already running")
        return {"workflow_id": workflow_id, "scheduled": True, **result.to_dict()}

    result = await executor.execute_workflow(workflow_id)
    if not result.success and result.execution_id is None:
        raise HTTPException(status_code=409, detail=result.error or "Workflow execution failed")
    return {"workflow_id": workflow_id, "scheduled": False, **result.to_dict()}


@router.post("/{workflow_id}/pause")
async def pause_workflow(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    workflow = await store.update_workflow_status(workflow_id, "paused")
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    await _sync_schedule(scheduler, workflow)
    return workflow.model_dump()


@router.post("/{workflow_id}/resume")
async def resume_workflow(
    workflow_id: str,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
):
    workflow = await store.update_workflow_status(workflow_id, "active")
    if not workflow:
        raise HTTPException(status_code=404, detail="Workflow not found")
    await _sync_schedule(scheduler, workflow)
    return workflow.model_dump()


@router.get("/{workflow_id}/logs")
async def workflow_logs(
    workflow_id: str,
    limit: int = 50,
    store: SqlWorkflowStore = Depends(get_workflow_store),
    logs: SqlExecutionLogStore = Depends(get_log_store),
):
    await _load_or_404(store, workflow_id)
    return [log.model_dump() for log in await logs.get_recent_logs(workflow_id, limit)]
