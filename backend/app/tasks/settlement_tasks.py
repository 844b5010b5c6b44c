"""
Celery tasks for settlement.

Each task opens its own session, runs one idempotent sweep and closes the
session. The services commit per item, so a retry only picks up what is
still due.
"""

import logging
from typing import Any, Callable, Dict, ParamSpec, Protocol, TypeVar, cast

from celery.result import AsyncResult
from sqlalchemy.orm import Session

from app.services.ledger_cache import build_ledger
from app.services.settlement_scheduler import SettlementScheduler
from app.services.teacher_payout_service import TeacherPayoutService
from app.tasks.celery_app import celery_app

P = ParamSpec("P")
R = TypeVar("R", covariant=True)

logger = logging.getLogger(__name__)


class TaskWrapper(Protocol[P, R]):
    def __call__(self, *args: P.args, **kwargs: P.kwargs) -> R:
        ...

    delay: Callable[..., AsyncResult]
    apply_async: Callable[..., AsyncResult]


def typed_task(
    *task_args: Any, **task_kwargs: Any
) -> Callable[[Callable[P, R]], TaskWrapper[P, R]]:
    """Return a typed Celery task decorator for mypy."""

    return cast(
        Callable[[Callable[P, R]], TaskWrapper[P, R]],
        celery_app.task(*task_args, **task_kwargs),
    )


@typed_task(bind=True, max_retries=3, name="app.tasks.settlement_tasks.process_payment_workflows")
def process_payment_workflows(self: Any) -> Dict[str, int]:
    """
    Advance every due settlement workflow one step.

    Returns:
        Sweep counters (examined / advanced / skipped / errored)
    """
    from app.database import SessionLocal

    db: Session = SessionLocal()
    try:
        scheduler = SettlementScheduler(db, ledger=build_ledger(db))
        result = scheduler.run_workflow_sweep()
        return result.model_dump()
    except Exception as exc:
        logger.error(f"Workflow sweep failed: {exc}")
        raise self.retry(exc=exc, countdown=60)
    finally:
        db.close()


@typed_task(bind=True, max_retries=3, name="app.tasks.settlement_tasks.process_teacher_payouts")
def process_teacher_payouts(self: Any) -> Dict[str, int]:
    """
    Pay teachers for every payment whose payout delay has passed.

    Returns:
        Batch counters (processed / skipped / failed)
    """
    from app.database import SessionLocal

    db: Session = SessionLocal()
    try:
        service = TeacherPayoutService(db, ledger=build_ledger(db))
        result = service.process_eligible_payouts()
        return result.model_dump()
    except Exception as exc:
        logger.error(f"Teacher payout batch failed: {exc}")
        raise self.retry(exc=exc, countdown=300)
    finally:
        db.close()
