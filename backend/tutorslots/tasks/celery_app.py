# backend/tutorslots/tasks/celery_app.py
"""
Celery application for the background sweeps.

Redis is both broker and result backend. The only periodic work is the
waitlist expiry sweep and the assignment-hold expiry sweep, both wired up
in beat_schedule.py.
"""

import os
from typing import Any

from celery import Celery
from celery.signals import setup_logging

from ..core.config import settings


def create_celery_app() -> Celery:
    """
    Create and configure the Celery application.

    Returns:
        Celery: Configured Celery application instance
    """
    # Priority: CELERY_BROKER_URL -> settings.redis_url
    broker_url = os.getenv("CELERY_BROKER_URL") or settings.redis_url
    result_backend = os.getenv("CELERY_RESULT_BACKEND") or broker_url

    celery_app = Celery("tutorslots", broker=broker_url, backend=result_backend)

    celery_app.conf.update(
        {
            "task_serializer": "json",
            "accept_content": ["json"],
            "result_serializer": "json",
            "timezone": "UTC",
            "enable_utc": True,
            "worker_prefetch_multiplier": 1,
            "worker_max_tasks_per_child": 1000,
            # Sweeps are short; anything slower than this is stuck on the DB
            "task_soft_time_limit": 120,
            "task_time_limit": 180,
            "task_acks_late": True,
            "task_reject_on_worker_lost": True,
            "worker_hijack_root_logger": False,
            "broker_transport_options": {"visibility_timeout": 3600, "polling_interval": 10.0},
            "task_always_eager": settings.is_testing,
        }
    )

    celery_app.conf.imports = ("tutorslots.tasks.sweep_tasks",)
    celery_app.conf.task_routes = {
        "waitlist.*": {"queue": "sweeps"},
        "slots.*": {"queue": "sweeps"},
    }

    from .beat_schedule import get_beat_schedule

    celery_app.conf.beat_schedule = get_beat_schedule()
    return celery_app


@setup_logging.connect  # type: ignore[misc]
def config_loggers(*args: Any, **kwargs: Any) -> None:
    """Configure logging to integrate with the application's logging setup."""
    import logging

    logging.basicConfig(
        level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


celery_app = create_celery_app()
