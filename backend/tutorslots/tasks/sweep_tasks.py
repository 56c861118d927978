# backend/tutorslots/tasks/sweep_tasks.py
"""
Periodic sweeps: expire unanswered waitlist offers and lapsed assignment holds.

The ``run_*`` helpers hold the actual work and take an open session, so
they can be driven directly; the Celery tasks wrap them with a session
scope, DB retry and the cross-worker mutex.
"""

from __future__ import annotations

from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from ..core.clock import Clock, system_clock
from ..core.sweep_lock import sweep_lock
from ..database import SessionLocal, with_db_retry
from ..services.notifier import LoggingNotifier, Notifier
from ..services.slot_service import SlotService
from ..services.waitlist_service import WaitlistService
from .beat_schedule import ASSIGNMENT_SWEEP_TASK, WAITLIST_SWEEP_TASK
from .celery_app import celery_app

logger = get_task_logger(__name__)


@contextmanager
def _session_scope() -> Iterator[Session]:
    """Provide transactional scope for use in tasks."""
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def run_waitlist_sweep(
    db: Session, clock: Clock = system_clock, notifier: Optional[Notifier] = None
) -> Dict[str, Any]:
    """Expire lapsed offers and notify each bucket's next waiting requester."""
    with sweep_lock(WAITLIST_SWEEP_TASK) as acquired:
        if not acquired:
            logger.info("Waitlist sweep already running elsewhere; skipping")
            return {"skipped": True, "expired": 0, "notified": 0}
        service = WaitlistService(db, clock, notifier or LoggingNotifier())
        result = service.expire_sweep()
    payload = {"skipped": False, **result.to_dict()}
    if result.expired_ids:
        logger.info(
            "Waitlist sweep expired %s offers, notified %s successors",
            len(result.expired_ids),
            len(result.notified_ids),
        )
    return payload


def run_assignment_sweep(
    db: Session, clock: Clock = system_clock, notifier: Optional[Notifier] = None
) -> Dict[str, Any]:
    """Return lapsed assignment holds to available."""
    with sweep_lock(ASSIGNMENT_SWEEP_TASK) as acquired:
        if not acquired:
            logger.info("Assignment sweep already running elsewhere; skipping")
            return {"skipped": True, "expired": 0, "expired_ids": []}
        service = SlotService(db, clock, notifier or LoggingNotifier())
        expired_ids = service.expire_assignments()
    return {"skipped": False, "expired": len(expired_ids), "expired_ids": expired_ids}


def _run_in_session(op_name: str, func: Any) -> Dict[str, Any]:
    def _attempt() -> Dict[str, Any]:
        with _session_scope() as session:
            result: Dict[str, Any] = func(session)
            return result

    return with_db_retry(op_name, _attempt)


@celery_app.task(name=WAITLIST_SWEEP_TASK, max_retries=0, queue="sweeps")
def sweep_expired_waitlist_offers() -> Dict[str, Any]:
    return _run_in_session(WAITLIST_SWEEP_TASK, run_waitlist_sweep)


@celery_app.task(name=ASSIGNMENT_SWEEP_TASK, max_retries=0, queue="sweeps")
def expire_assignment_holds() -> Dict[str, Any]:
    return _run_in_session(ASSIGNMENT_SWEEP_TASK, run_assignment_sweep)
