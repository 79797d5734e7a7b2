"""
SQLAlchemy models for the workflow dashboard.
"""
from __future__ import annotations

import uuid

from sqlalchemy import JSON, Column, DateTime, Float, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

Base = declarative_base()


def _new_id() -> str:
    return str(uuid.uuid4())


class Workflow(Base):
    __tablename__ = "workflows"

    id = Column(String(36), primary_key=True, default=_new_id)
    name = Column(Text, nullable=False)
    description = Column(Text, default="")
    trigger_type = Column(String(16), nullable=False, default="manual")
    schedule = Column(Text)
    actions = Column(JSON, nullable=False, default=list)
    status = Column(String(16), nullable=False, default="active")
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())


class ExecutionLog(Base):
    __tablename__ = "execution_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    workflow_id = Column(String(36), nullable=False, index=True)
    status = Column(String(16), nullable=False)
    message = Column(Text, nullable=False)
    execution_time = Column(DateTime(timezone=True), nullable=False)
    duration_ms = Column(Integer)


class SystemMetric(Base):
    __tablename__ = "system_metrics"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cpu_usage = Column(Float, nullable=False)
    memory_usage = Column(Float, nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())
