# backend/app/tasks/__init__.py
"""
Celery tasks package for the settlement engine.

This allows running celery with: celery -A app.tasks worker
"""

from app.tasks.celery_app import BaseTask, celery_app
from app.tasks.settlement_tasks import process_payment_workflows, process_teacher_payouts

__all__ = [
    "celery_app",
    "BaseTask",
    "process_payment_workflows",
    "process_teacher_payouts",
]
