#!/usr/bin/env python3
# backend/run_celery_beat.py
"""
Development Celery beat; schedules the periodic sweeps.
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
    print("Starting Celery beat (waitlist and assignment sweeps)")

    cmd = [sys.executable, "-m", "celery", "-A", "tutorslots.tasks.celery_app", "beat", "--loglevel=info"]

    subprocess.run(cmd)
