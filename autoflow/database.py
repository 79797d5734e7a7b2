"""
Database connection and session management.
"""
from __future__ import annotations

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from autoflow.config import settings


def build_engine(database_url: str) -> Engine:
    """Create an engine; SQLite connections are shared with the event loop thread pool."""
    if database_url.startswith("sqlite"):
        kwargs: dict = {"connect_args": {"check_same_thread": False}}
        if database_url in ("sqlite://", "sqlite:///:memory:"):
            kwargs["poolclass"] = StaticPool
        return create_engine(database_url, echo=False, **kwargs)
    return create_engine(
        database_url,
        pool_pre_ping=True,
        pool_size=10,
        max_overflow=20,
        echo=False,
    )


def create_session_factory(database_url: str) -> sessionmaker:
    """Build an engine plus session factory and make sure the tables exist."""
    from autoflow.models import Base

    bind = build_engine(database_url)
    Base.metadata.create_all(bind=bind)
    return sessionmaker(autocommit=False, autoflush=False, bind=bind)


engine: Engine = build_engine(settings.database_url)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """
    Initialize database by registering models and creating tables.
    """
    from autoflow.models import Base
    from autoflow.seeds import seed_workflows

    Base.metadata.create_all(bind=engine)

    # Seed the predefined automations on an empty database.
    db = SessionLocal()
    try:
        seed_workflows(db)
    finally:
        db.close()
