"""Repository for fee policies."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.exceptions import RepositoryException
from app.models.fee_policy import FeePolicy
from app.repositories.base_repository import BaseRepository


class FeePolicyRepository(BaseRepository[FeePolicy]):
    def __init__(self, db: Session) -> None:
        super().__init__(db, FeePolicy)

    def get_active(self) -> Optional[FeePolicy]:
        """Most recently created active policy."""
        query = (
            self._build_query()
            .filter(FeePolicy.is_active.is_(True))
            .order_by(FeePolicy.created_at.desc(), FeePolicy.id.desc())
            .limit(1)
        )
        rows = self._execute_query(query)
        return rows[0] if rows else None

    def deactivate_all(self) -> int:
        stmt = (
            update(FeePolicy)
            .where(FeePolicy.is_active.is_(True))
            .values(is_active=False)
            .execution_options(synchronize_session="evaluate")
        )
        try:
            result = self.db.execute(stmt)
        except SQLAlchemyError as e:
            self.logger.error(f"Error deactivating fee policies: {str(e)}")
            raise RepositoryException(f"Failed to deactivate fee policies: {str(e)}") from e
        return int(result.rowcount or 0)
