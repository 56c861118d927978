"""
Redis mutex for background sweeps.

Several Celery workers (or beat replicas) may fire the same sweep. The
lock keeps them from doing the work twice, but the sweeps are idempotent,
so when Redis is unreachable the lock fails open and the sweep runs.
"""

from __future__ import annotations

from contextlib import contextmanager
import logging
import threading
import time
from typing import Iterator, Optional

from redis import Redis

from ..monitoring.prometheus_metrics import prometheus_metrics
from .config import settings

logger = logging.getLogger(__name__)

_REDIS: Optional[Redis] = None
_REDIS_LOCK = threading.Lock()


def _lock_key(sweep_name: str) -> str:
    return f"tutorslots:sweep:{sweep_name}:mutex"


def _get_redis() -> Optional[Redis]:
    global _REDIS
    if _REDIS is not None:
        return _REDIS
    with _REDIS_LOCK:
        if _REDIS is not None:
            return _REDIS
        try:
            client = Redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
            client.ping()
        except Exception as exc:
            logger.warning("sweep_lock_redis_unavailable: %s", exc)
            return None
        _REDIS = client
        return _REDIS


def acquire_sweep_lock(sweep_name: str, ttl_s: Optional[int] = None) -> bool:
    client = _get_redis()
    if client is None:
        prometheus_metrics.record_sweep_lock(sweep_name, "redis_unavailable")
        return True
    try:
        acquired = bool(
            client.set(
                _lock_key(sweep_name),
                str(time.time()),
                nx=True,
                ex=ttl_s or settings.sweep_lock_ttl_seconds,
            )
        )
    except Exception as exc:
        prometheus_metrics.record_sweep_lock(sweep_name, "error")
        logger.warning(
            "sweep_lock_acquire_failed",
            extra={"sweep": sweep_name, "error": str(exc), "error_type": type(exc).__name__},
        )
        return True
    prometheus_metrics.record_sweep_lock(sweep_name, "acquired" if acquired else "blocked")
    return acquired


def release_sweep_lock(sweep_name: str) -> None:
    client = _get_redis()
    if client is None:
        return
    try:
        client.delete(_lock_key(sweep_name))
    except Exception as exc:
        logger.warning(
            "sweep_lock_release_failed",
            extra={"sweep": sweep_name, "error": str(exc), "error_type": type(exc).__name__},
        )


@contextmanager
def sweep_lock(sweep_name: str, ttl_s: Optional[int] = None) -> Iterator[bool]:
    """Yields whether this caller should run the sweep."""
    acquired = acquire_sweep_lock(sweep_name, ttl_s=ttl_s)
    try:
        yield acquired
    finally:
        if acquired:
            release_sweep_lock(sweep_name)
