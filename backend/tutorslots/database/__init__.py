"""
Database engine, session factory, and metadata shared across the application.
"""

from __future__ import annotations

from datetime import datetime
import logging
import random
import time
from typing import Any, Callable, Generator, TypeVar

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from ..core.config import settings

logger = logging.getLogger(__name__)

_DEFAULT_POOL_KWARGS: dict[str, Any] = {
    "pool_size": 5,
    "max_overflow": 10,
    # Fail fast when the pool is exhausted rather than queueing requests
    "pool_timeout": 5,
    "pool_recycle": 300,
    "pool_pre_ping": True,
    "pool_use_lifo": True,
}


def build_engine_kwargs(db_url: str) -> dict[str, Any]:
    """Engine options for the configured backend."""
    if db_url.startswith("sqlite"):
        # SQLite connections are shared across FastAPI's worker threads
        return {"connect_args": {"check_same_thread": False}, "echo": settings.database_echo}
    kwargs = dict(_DEFAULT_POOL_KWARGS)
    kwargs["echo"] = settings.database_echo
    return kwargs


engine: Engine = create_engine(settings.database_url, **build_engine_kwargs(settings.database_url))


@event.listens_for(engine, "connect")
def receive_connect(dbapi_connection: Any, connection_record: Any) -> None:
    connection_record.info["connect_time"] = datetime.now()
    logger.debug("Database connection established")


SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, expire_on_commit=False)

Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    """Get database session with proper cleanup."""
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


T = TypeVar("T")
_RETRYABLE_ERROR_SNIPPETS = (
    "server closed the connection",
    "ssl connection has been closed unexpectedly",
    "database is locked",
)


def _is_retryable_db_error(exc: OperationalError) -> bool:
    message = str(exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int) -> float:
    base = 0.1 * (2 ** (attempt - 1))
    return base + random.uniform(0, 0.05 * attempt)


def with_db_retry(op_name: str, func: Callable[[], T], *, max_attempts: int = 3) -> T:
    """
    Execute a DB operation with retries for transient disconnects and lock timeouts.
    """

    attempt = 1
    while True:
        try:
            return func()
        except OperationalError as exc:
            if attempt >= max_attempts or not _is_retryable_db_error(exc):
                raise

            delay = _retry_delay(attempt)
            logger.warning(
                "db_retry",
                extra={"operation": op_name, "attempt": attempt, "delay_s": round(delay, 3)},
            )
            time.sleep(delay)
            attempt += 1


__all__ = ["Base", "SessionLocal", "engine", "get_db", "with_db_retry", "build_engine_kwargs"]
