import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')
os.environ.setdefault('APP_ENV', 'test')
os.environ.setdefault('SCHEDULER_ENABLED', 'false')

from autoflow.database import create_session_factory
from autoflow.models import ExecutionLog, Workflow
from autoflow.services.actions import ActionDispatcher
from autoflow.services.stores import SqlExecutionLogStore, SqlMetricsStore, SqlWorkflowStore
from autoflow.services.workflow_engine import WorkflowExecutor


class RecordingSink:
    def __init__(self):
        self.events = []

    async def emit(self, event, payload):
        self.events.append((event, payload))

    def statuses(self):
        return [payload['status'] for _, payload in self.events]


@pytest.fixture
def session_factory():
    return create_session_factory('sqlite://')


@pytest.fixture
def workflow_store(session_factory):
    return SqlWorkflowStore(session_factory)


@pytest.fixture
def log_store(session_factory):
    return SqlExecutionLogStore(session_factory)


@pytest.fixture
def metrics_store(session_factory):
    return SqlMetricsStore(session_factory)


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def dispatcher(metrics_store):
    return ActionDispatcher(metrics_store=metrics_store, system_sampler=lambda: (12.5, 40.0))


@pytest.fixture
def executor(workflow_store, log_store, dispatcher, sink):
    return WorkflowExecutor(
        workflow_store=workflow_store,
        log_store=log_store,
        dispatcher=dispatcher,
        notifications=sink,
        action_timeout=5.0,
    )


@pytest.fixture
def add_workflow(session_factory):
    """Insert a workflow row and return its id."""

    def _add(actions=None, status='active', trigger_type='manual', schedule=None, name='Test workflow'):
        db = session_factory()
        try:
            row = Workflow(
                name=name,
                description='',
                trigger_type=trigger_type,
                schedule=schedule,
                actions=actions or [],
                status=status,
            )
            db.add(row)
            db.commit()
            return row.id
        finally:
            db.close()

    return _add


@pytest.fixture
def add_logs(session_factory):
    """Insert execution logs oldest first, one second apart."""

    def _add(workflow_id, statuses):
        base = datetime(2024, 1, 1, tzinfo=timezone.utc)
        db = session_factory()
        try:
            for offset, status in enumerate(statuses):
                db.add(
                    ExecutionLog(
                        workflow_id=workflow_id,
                        status=status,
                        message=f'seeded {status}',
                        execution_time=base + timedelta(seconds=offset),
                        duration_ms=1,
                    )
                )
            db.commit()
        finally:
            db.close()

    return _add
