"""
Autoflow - FastAPI Application
Hosts the workflow engine and its cron scheduler behind the dashboard API
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import sessionmaker

from autoflow.api import websocket
from autoflow.api.v1 import executions, health, scheduler as scheduler_routes, workflows
from autoflow.config import Settings, settings as default_settings
from autoflow.core.logger import configure_logging
from autoflow.services.actions import ActionDispatcher
from autoflow.services.notification_service import WebSocketNotificationSink
from autoflow.services.stores import SqlExecutionLogStore, SqlMetricsStore, SqlWorkflowStore
from autoflow.services.workflow_engine import WorkflowExecutor
from autoflow.services.workflow_scheduler import WorkflowScheduler
from autoflow.websockets.connection_manager import ConnectionManager

logger = logging.getLogger(__name__)


def build_engine_state(app: FastAPI, session_factory: sessionmaker, config: Settings) -> None:
    """Wire stores, executor and scheduler onto ``app.state``."""
    app.state.connections = ConnectionManager()
    app.state.workflow_store = SqlWorkflowStore(session_factory)
    app.state.log_store = SqlExecutionLogStore(session_factory)
    app.state.metrics_store = SqlMetricsStore(session_factory)
    app.state.executor = WorkflowExecutor(
        workflow_store=app.state.workflow_store,
        log_store=app.state.log_store,
        dispatcher=ActionDispatcher(
            metrics_store=app.state.metrics_store,
            http_timeout=config.http_timeout_seconds,
        ),
        notifications=WebSocketNotificationSink(app.state.connections),
        action_timeout=config.action_timeout_seconds,
        failure_window=config.failure_window,
        failure_threshold=config.failure_threshold,
    )
    app.state.scheduler = WorkflowScheduler(
        executor=app.state.executor,
        workflow_store=app.state.workflow_store,
        tz=config.scheduler_timezone,
    )


def create_app(session_factory: Optional[sessionmaker] = None, config: Optional[Settings] = None) -> FastAPI:
    config = config or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Handle startup and shutdown events."""
        configure_logging(config.log_level)
        logger.info("Starting %s...", config.app_name)

        factory = session_factory
        if factory is None:
            from autoflow.database import SessionLocal, init_db

            init_db()
            logger.info("Database initialized")
            factory = SessionLocal

        build_engine_state(app, factory, config)
        if config.scheduler_enabled:
            await app.state.scheduler.start()
        logger.info("API running on %s environment", config.app_env)
        yield
        await app.state.scheduler.stop()
        logger.info("Shutting down %s...", config.app_name)

    app = FastAPI(
        title=config.app_name,
        description="Workflow automation dashboard API",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/")
    async def root() -> dict:
        return {
            "name": config.app_name,
            "environment": config.app_env,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    prefix = config.api_v1_prefix
    app.include_router(health.router, prefix=prefix, tags=["Health"])
    app.include_router(workflows.router, prefix=f"{prefix}/workflows", tags=["Workflows"])
    app.include_router(executions.router, prefix=f"{prefix}/executions", tags=["Executions"])
    app.include_router(scheduler_routes.router, prefix=f"{prefix}/scheduler", tags=["Scheduler"])
    app.include_router(websocket.router, tags=["WebSocket"])
    return app


app = create_app()
