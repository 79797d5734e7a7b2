from __future__ import annotations

from typing import Any

from sqlalchemy.orm import Session

from autoflow.models import Workflow

WORKFLOW_SEED_DATA: list[dict[str, Any]] = [
    {
        "name": "System Health Check",
        "description": "Samples CPU and memory every 5 minutes and logs threshold alerts",
        "trigger_type": "cron",
        "schedule": "*/5 * * * *",
        "actions": [
            {
                "type": "check_system_metrics",
                "parameters": {"thresholds": {"cpu": 80, "memory": 85}, "storeAs": "systemMetrics"},
            },
            {
                "type": "log_result",
                "parameters": {"message": "System health check completed", "level": "info"},
            },
        ],
    },
    {
        "name": "Daily Sales Report",
        "description": "Builds the daily summary report and emails it at 9am",
        "trigger_type": "cron",
        "schedule": "0 9 * * *",
        "actions": [
            {
                "type": "check_system_metrics",
                "parameters": {"storeAs": "metrics"},
            },
            {
                "type": "generate_report",
                "parameters": {
                    "format": "text",
                    "template": "Daily report\nMetrics: {{metrics}}",
                    "storeAs": "report",
                },
            },
            {
                "type": "send_email",
                "parameters": {
                    "to": "team@example.com",
                    "subject": "Daily report",
                    "body": "The daily report is ready.",
                },
            },
        ],
    },
]


def seed_workflows(db: Session) -> int:
    """Insert the predefined automations on an empty database; returns rows added."""
    if db.query(Workflow).count() > 0:
        return 0
    for item in WORKFLOW_SEED_DATA:
        db.add(Workflow(status="active", **item))
    db.commit()
    return len(WORKFLOW_SEED_DATA)
