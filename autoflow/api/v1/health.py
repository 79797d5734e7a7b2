"""
Health API Routes
"""
from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from autoflow.api.dependencies import get_metrics_store, get_scheduler
from autoflow.core.exceptions import PersistenceError
from autoflow.services.stores import SqlMetricsStore
from autoflow.services.workflow_scheduler import WorkflowScheduler

router = APIRouter()


@router.get("/health")
async def health_check(
    metrics: SqlMetricsStore = Depends(get_metrics_store),
    scheduler: WorkflowScheduler = Depends(get_scheduler),
) -> JSONResponse:
    """Database reachability plus scheduler state"""
    try:
        latest = await metrics.get_latest()
        database_ok = True
    except PersistenceError:
        latest = None
        database_ok = False
    return JSONResponse(
        status_code=status.HTTP_200_OK if database_ok else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if database_ok else "degraded",
            "database": database_ok,
            "scheduler": scheduler.get_stats().to_dict() | {"running": scheduler.is_running()},
            "latest_metrics": latest.model_dump(mode="json") if latest else None,
        },
    )
