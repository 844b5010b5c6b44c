#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Local Celery worker for the settlement queue.

Start ``celery -A app.tasks.celery_app beat`` alongside it to get the
workflow and payout sweeps on schedule.
"""
import os
from pathlib import Path
import subprocess
import sys

backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

if __name__ == "__main__":
    queues = os.getenv("CELERY_QUEUES", "settlement,celery")
    print(f"🔄 Celery worker consuming queues: {queues}")

    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "app.tasks.celery_app",
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--max-tasks-per-child=100",
        "-Q",
        queues,
    ]
    subprocess.run(cmd)
