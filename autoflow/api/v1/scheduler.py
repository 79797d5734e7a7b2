from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from autoflow.api.dependencies import get_scheduler
from autoflow.services.workflow_scheduler import WorkflowScheduler

router = APIRouter()


@router.get("/stats")
async def scheduler_stats(scheduler: WorkflowScheduler = Depends(get_scheduler)):
    return {"running": scheduler.is_running(), **scheduler.get_stats().to_dict()}


@router.get("/tasks")
async def scheduled_tasks(scheduler: WorkflowScheduler = Depends(get_scheduler)):
    return [entry.to_dict() for entry in scheduler.get_scheduled_tasks()]


@router.get("/tasks/{workflow_id}")
async def scheduled_task(workflow_id: str, scheduler: WorkflowScheduler = Depends(get_scheduler)):
    entry = scheduler.get_scheduled_task(workflow_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Workflow is not scheduled")
    return entry.to_dict()


@router.post("/reload")
async def reload_scheduler(scheduler: WorkflowScheduler = Depends(get_scheduler)):
    if not scheduler.is_running():
        raise HTTPException(status_code=409, detail="Scheduler is not running")
    await scheduler.reload_workflows()
    return {"success": True, "scheduled": len(scheduler.get_scheduled_tasks())}
