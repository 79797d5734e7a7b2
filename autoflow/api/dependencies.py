"""Shared API dependencies resolving the engine objects owned by the app."""
from __future__ import annotations

from fastapi import Request

from autoflow.services.stores import SqlExecutionLogStore, SqlMetricsStore, SqlWorkflowStore
from autoflow.services.workflow_engine import WorkflowExecutor
from autoflow.services.workflow_scheduler import WorkflowScheduler


def get_workflow_store(request: Request) -> SqlWorkflowStore:
    return request.app.state.workflow_store


def get_log_store(request: Request) -> SqlExecutionLogStore:
    return request.app.state.log_store


def get_metrics_store(request: Request) -> SqlMetricsStore:
    return request.app.state.metrics_store


def get_executor(request: Request) -> WorkflowExecutor:
    return request.app.state.executor


def get_scheduler(request: Request) -> WorkflowScheduler:
    return request.app.state.scheduler
