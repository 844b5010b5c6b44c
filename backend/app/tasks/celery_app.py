# backend/app/tasks/celery_app.py
"""
Celery application for the settlement engine.

Redis is the broker and result backend. Beat drives the settlement sweeps;
see ``app.tasks.beat_schedule``.
"""

from datetime import datetime, timezone
import logging
import os
from typing import Any, Dict, Type, cast

from celery import Celery, Task
from celery.signals import setup_logging

from app.core.config import settings

logger = logging.getLogger(__name__)

SETTLEMENT_QUEUE = "settlement"


def _broker_url() -> str:
    url = os.getenv("CELERY_BROKER_URL") or settings.redis_url or "redis://localhost:6379/0"
    # Settlement shares Redis with the ledger cache; default to db 0 when none is given
    if url.rstrip("/").count("/") < 3:
        url = f"{url.rstrip('/')}/0"
    return url


def create_celery_app() -> Celery:
    """Build the Celery app with settlement routing and the beat schedule."""
    broker_url = _broker_url()
    app = Celery(
        "settlement",
        broker=broker_url,
        backend=os.getenv("CELERY_RESULT_BACKEND") or broker_url,
    )

    app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "result_expires": 3600,
            # One sweep per worker process at a time; sweeps hold row locks
            "worker_prefetch_multiplier": 1,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "task_soft_time_limit": 240,
            "task_time_limit": 300,
            "task_default_retry_delay": 60,
            "worker_hijack_root_logger": False,
            "imports": ("app.tasks.settlement_tasks",),
            "task_routes": {"app.tasks.settlement_tasks.*": {"queue": SETTLEMENT_QUEUE}},
        }
    )

    from app.tasks.beat_schedule import get_beat_schedule

    app.conf.beat_schedule = get_beat_schedule(settings.environment)
    return app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Use the application's log format instead of Celery's."""
    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()


class BaseTask(Task):  # type: ignore[misc]
    """Task base that logs settlement task failures and retries."""

    def on_failure(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.error(
            f"Settlement task {self.name}[{task_id}] failed: {exc}",
            exc_info=True,
            extra={"task_id": task_id, "task_name": self.name},
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)

    def on_retry(self, exc: Exception, task_id: str, args: Any, kwargs: Any, einfo: Any) -> None:
        logger.warning(
            f"Settlement task {self.name}[{task_id}] retry {self.request.retries}: {exc}",
            extra={"task_id": task_id, "retry_count": self.request.retries},
        )
        super().on_retry(exc, task_id, args, kwargs, einfo)


celery_app.Task = cast(Type[Task], BaseTask)


@celery_app.task(name="app.tasks.health_check")  # type: ignore[misc]
def health_check() -> Dict[str, str]:
    """Lets monitoring confirm a worker is consuming."""
    current_task = celery_app.current_task
    return {
        "status": "healthy",
        "worker": current_task.request.hostname if current_task else "unknown",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
