# backend/app/tasks/beat_schedule.py
"""
Celery Beat schedule for the settlement sweeps.

Both sweeps are idempotent polling passes, so a missed or doubled beat only
shifts when money moves, never how much.
"""

from datetime import timedelta
from typing import Any

from celery.schedules import crontab

from app.core.config import settings


def _every_minutes(minutes: int) -> Any:
    return crontab(minute=f"*/{max(minutes, 1)}")


CELERYBEAT_SCHEDULE: dict[str, dict[str, Any]] = {
    "process-payment-workflows": {
        "task": "app.tasks.settlement_tasks.process_payment_workflows",
        "schedule": _every_minutes(settings.workflow_sweep_interval_minutes),
        "options": {
            "queue": "settlement",
            "priority": 8,
        },
    },
    "process-teacher-payouts": {
        "task": "app.tasks.settlement_tasks.process_teacher_payouts",
        "schedule": _every_minutes(settings.payout_sweep_interval_minutes),
        "options": {
            "queue": "settlement",
            "priority": 9,
        },
    },
}

SCHEDULE_CONFIG: dict[str, dict[str, dict[str, Any]]] = {
    "production": {},
    "testing": {
        "process-payment-workflows": {
            "task": "app.tasks.settlement_tasks.process_payment_workflows",
            "schedule": timedelta(seconds=30),
            "options": {"queue": "settlement", "priority": 10},
        },
    },
}


def get_beat_schedule(environment: str = "production") -> dict[str, dict[str, Any]]:
    """
    Get the beat schedule for the specified environment.

    Args:
        environment: The environment name (production, development, testing)

    Returns:
        Mapping of task name to Celery beat configuration dict
    """
    base: dict[str, dict[str, Any]] = dict(CELERYBEAT_SCHEDULE)
    overrides = SCHEDULE_CONFIG.get(environment)
    if overrides:
        base.update(overrides)
    return base
