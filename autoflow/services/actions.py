"""
Action handlers for workflow steps.

Each handler takes the action parameters and the shared execution context and
returns a result payload. A handler signals failure by raising; the engine
turns that into a failed ActionResult and stops the sequence. The ``storeAs``
parameter is the only way one action hands data to the next.
"""
from __future__ import annotations

import asyncio
import csv
import io
import json
import logging
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
import psutil

from autoflow.core.exceptions import ActionError, MissingParameterError, PersistenceError
from autoflow.models.execution import ExecutionContext
from autoflow.services.stores import MetricsStore

logger = logging.getLogger(__name__)
workflow_logger = logging.getLogger("autoflow.workflow")

Handler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[Any]]

TEMPLATE_PATTERN = re.compile(r"\{\{(\w+)\}\}")


def sample_system_usage() -> tuple[float, float]:
    """Current CPU and memory utilisation in percent."""
    cpu = psutil.cpu_percent(interval=None)
    memory = psutil.virtual_memory().percent
    return max(0.0, min(100.0, float(cpu))), float(memory)


def generate_csv(data: Any) -> str:
    if not isinstance(data, list) or not data or not isinstance(data[0], dict):
        return ""
    headers = list(data[0].keys())
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(headers)
    for row in data:
        row = row if isinstance(row, dict) else {}
        writer.writerow(["" if row.get(h) is None else row.get(h) for h in headers])
    return buffer.getvalue().rstrip("\n")


def generate_text_report(data: Any, template: Optional[str] = None) -> str:
    values = data if isinstance(data, dict) else {}
    if template:
        def substitute(match: re.Match) -> str:
            value = values.get(match.group(1))
            if value is None or value == "":
                return match.group(0)
            return value if isinstance(value, str) else json.dumps(value, default=str)

        return TEMPLATE_PATTERN.sub(substitute, template)
    return "\n".join(f"{key}: {json.dumps(value, default=str)}" for key, value in values.items())


class ActionDispatcher:
    """Maps action types to their handlers."""

    def __init__(
        self,
        metrics_store: Optional[MetricsStore] = None,
        http_timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        system_sampler: Callable[[], tuple[float, float]] = sample_system_usage,
    ):
        self.metrics_store = metrics_store
        self.http_timeout = http_timeout
        self.transport = transport
        self.system_sampler = system_sampler
        self.handlers: Dict[str, Handler] = {
            "fetch_data": self.fetch_data,
            "generate_report": self.generate_report,
            "send_email": self.send_email,
            "check_system_metrics": self.check_system_metrics,
            "log_result": self.log_result,
        }

    async def dispatch(self, action_type: str, parameters: Dict[str, Any], context: ExecutionContext) -> Any:
        handler = self.handlers.get(action_type)
        if handler is None:
            raise ActionError(f"Unknown action type: {action_type}")
        result = await handler(parameters, context)
        store_as = parameters.get("storeAs")
        if store_as:
            context.variables[store_as] = result
        return result

    async def fetch_data(self, parameters: Dict[str, Any], context: ExecutionContext) -> Any:
        url = parameters.get("url")
        if not url:
            raise MissingParameterError("url parameter is required for fetch_data action")

        method = str(parameters.get("method") or "GET").upper()
        headers = {"Content-Type": "application/json", **(parameters.get("headers") or {})}
        body = parameters.get("body")

        async with httpx.AsyncClient(timeout=self.http_timeout, transport=self.transport) as client:
            try:
                response = await client.request(
                    method,
                    url,
                    headers=headers,
                    content=json.dumps(body) if body is not None else None,
                )
            except httpx.HTTPError as exc:
                raise ActionError(f"Request to {url} failed: {exc}") from exc

        if context.cancelled:
            raise ActionError(f"Execution {context.execution_id} was stopped during fetch_data")
        if not response.is_success:
            raise ActionError(f"HTTP {response.status_code}: {response.reason_phrase}")

        try:
            return response.json()
        except ValueError:
            return response.text

    async def generate_report(self, parameters: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        template = parameters.get("template")
        report_format = parameters.get("format") or "json"
        output_path = parameters.get("outputPath")
        data = parameters.get("data")
        report_data = data if data is not None else dict(context.variables)

        if report_format == "json":
            report = json.dumps(report_data, indent=2, default=str)
        elif report_format == "csv":
            report = generate_csv(report_data)
        elif report_format == "text":
            report = generate_text_report(report_data, template)
        else:
            raise ActionError(f"Unsupported report format: {report_format}")

        if output_path:
            full_path = Path(output_path).resolve()
            try:
                await asyncio.to_thread(_write_report, full_path, report)
            except OSError as exc:
                raise ActionError(f"Failed to write report to {full_path}: {exc}") from exc

        return {
            "format": report_format,
            "content": report,
            "path": output_path,
            "size": len(report),
        }

    async def send_email(self, parameters: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        to = parameters.get("to")
        subject = parameters.get("subject")
        body = parameters.get("body")
        if not to or not subject or not body:
            raise MissingParameterError("to, subject, and body parameters are required for send_email action")

        # No transport: the email is recorded, not delivered.
        email_data = {
            "to": list(to) if isinstance(to, (list, tuple)) else [to],
            "subject": subject,
            "body": body if isinstance(body, str) else json.dumps(body, default=str),
            "attachments": parameters.get("attachments") or [],
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        logger.info(
            "Email sent workflow=%s execution=%s to=%s subject=%s",
            context.workflow_id,
            context.execution_id,
            email_data["to"],
            subject,
        )
        return email_data

    async def check_system_metrics(self, parameters: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        cpu, memory = self.system_sampler()
        metrics: Dict[str, Any] = {
            "cpu_usage": cpu,
            "memory_usage": memory,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

        if self.metrics_store is not None:
            try:
                await self.metrics_store.record_sample(cpu, memory)
            except PersistenceError as exc:
                logger.error("Could not persist metrics sample for %s: %s", context.execution_id, exc)

        thresholds = parameters.get("thresholds") or {}
        alerts = []
        if thresholds.get("cpu") and cpu > thresholds["cpu"]:
            alerts.append(f"CPU usage {cpu}% exceeds threshold {thresholds['cpu']}%")
        if thresholds.get("memory") and memory > thresholds["memory"]:
            alerts.append(f"Memory usage {memory}% exceeds threshold {thresholds['memory']}%")
        if alerts:
            logger.warning("System alerts for workflow %s: %s", context.workflow_id, alerts)
            metrics["alerts"] = alerts
        return metrics

    async def log_result(self, parameters: Dict[str, Any], context: ExecutionContext) -> Dict[str, Any]:
        message = parameters.get("message")
        level = str(parameters.get("level") or "info").lower()
        data = parameters.get("data")
        entry = {
            "level": level,
            "message": message if isinstance(message, str) else json.dumps(message, default=str),
            "data": data if data is not None else dict(context.variables),
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "workflowId": context.workflow_id,
            "executionId": context.execution_id,
        }

        if level == "error":
            log_level = logging.ERROR
        elif level in ("warn", "warning"):
            log_level = logging.WARNING
        else:
            log_level = logging.INFO
        workflow_logger.log(log_level, "%s", json.dumps(entry, default=str))
        return entry


def _write_report(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")
