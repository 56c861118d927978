#!/usr/bin/env python3
# backend/run_celery_worker.py
"""
Development Celery worker for the waitlist and assignment sweeps.
"""
import os
from pathlib import Path
import subprocess
import sys

# Add backend to path
backend_dir = Path(__file__).parent
sys.path.insert(0, str(backend_dir))
os.chdir(backend_dir)

if __name__ == "__main__":
    queues = os.getenv("CELERY_QUEUES") or "sweeps,celery"
    print(f"Starting Celery worker, consuming queues: {queues}")

    cmd = [
        sys.executable,
        "-m",
        "celery",
        "-A",
        "tutorslots.tasks.celery_app",
        "worker",
        "--loglevel=info",
        "--concurrency=2",
        "--max-tasks-per-child=100",
        "-Q",
        queues,
    ]

    subprocess.run(cmd)
