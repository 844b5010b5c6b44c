"""
Helpers for working with SQLAlchemy sessions in a dialect-agnostic way.
"""

from __future__ import annotations

from typing import Optional, Union

from sqlalchemy.engine import Connection, Engine
from sqlalchemy.orm import Session


def resolve_session_bind(session: Session) -> Optional[Union[Connection, Engine]]:
    """Return the engine/connection bound to a session, if any."""
    try:
        return session.get_bind()
    except Exception:
        # UnboundExecutionError for sessions created without a bind
        return None


def get_dialect_name(session: Session, default: str = "sqlite") -> str:
    """Return the SQLAlchemy dialect name, falling back to ``default``."""
    bind = resolve_session_bind(session)
    if bind is None:
        return default
    name = getattr(getattr(bind, "dialect", None), "name", None)
    return name or default


def supports_skip_locked(session: Session) -> bool:
    """Row-level ``FOR UPDATE SKIP LOCKED`` is only available on PostgreSQL."""
    return get_dialect_name(session) == "postgresql"
