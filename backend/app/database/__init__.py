"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
from typing import Any, Generator

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeMeta, Session, declarative_base, sessionmaker
from sqlalchemy.pool import QueuePool

from app.core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    # Sweeps run in Celery workers next to API workers; keep the pool small
    "pool_size": 5,
    "max_overflow": 5,
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}


def _build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Return engine kwargs appropriate for the URL's dialect."""

    if db_url.startswith("sqlite"):
        return {"connect_args": {"check_same_thread": False}}
    kwargs = dict(_DEFAULT_POOL_KWARGS)
    kwargs["poolclass"] = QueuePool
    kwargs["connect_args"] = {"application_name": "settlement_engine"}
    return kwargs


def enable_sqlite_savepoints(target: Engine) -> None:
    """
    Let SQLAlchemy own BEGIN on pysqlite so SAVEPOINT/ROLLBACK TO work.

    Per-workflow savepoints in the sweeps rely on this when running on SQLite.
    """

    @event.listens_for(target, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(target, "begin")
    def _emit_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")


db_url = settings.get_database_url()
engine: Engine = create_engine(db_url, future=True, **_build_engine_kwargs(db_url))
if engine.dialect.name == "sqlite":
    enable_sqlite_savepoints(engine)


# Log pool events for monitoring
@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base: DeclarativeMeta = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


__all__ = [
    "Base",
    "SessionLocal",
    "enable_sqlite_savepoints",
    "engine",
    "get_db",
]
