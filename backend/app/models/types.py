# backend/app/models/types.py
"""
Custom SQLAlchemy types that work across different database backends.
"""

from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

from sqlalchemy import DateTime, TypeDecorator
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.types import JSON

if TYPE_CHECKING:
    from sqlalchemy.sql.type_api import TypeDecorator as _TypeDecorator

    TypeDecoratorProtocol = _TypeDecorator[Any]
else:
    TypeDecoratorProtocol = TypeDecorator


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Return an aware UTC datetime; naive values are assumed to already be UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecoratorProtocol):
    """
    Timezone-aware UTC timestamp.

    PostgreSQL stores ``timestamptz`` natively. SQLite drops tzinfo, so values
    are written as naive UTC and re-tagged with UTC on the way out. Every
    settlement comparison (``next_action_at <= now``) relies on this.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        if not isinstance(value, datetime):
            raise TypeError(f"UTCDateTime expects datetime, got {type(value).__name__}")
        aware = ensure_utc(value)
        if dialect.name == "sqlite" and aware is not None:
            return aware.replace(tzinfo=None)
        return aware

    def process_result_value(self, value: Any, dialect: Any) -> Any:
        if value is None:
            return value
        return ensure_utc(value)


# JSON list column: JSONB on PostgreSQL, plain JSON elsewhere
JSONList = JSONB().with_variant(JSON(), "sqlite")
