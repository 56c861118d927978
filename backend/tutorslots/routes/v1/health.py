# backend/tutorslots/routes/v1/health.py
"""
Health and metrics endpoints for probes and Prometheus scraping.
"""

from __future__ import annotations

from datetime import datetime, timezone
import logging

from fastapi import APIRouter, Depends, Response
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ... import __version__
from ...api.dependencies import get_db
from ...core.config import settings
from ...monitoring.prometheus_metrics import prometheus_metrics
from ...schemas.health import HealthResponse

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health", response_model=HealthResponse)
def health_check(db: Session = Depends(get_db)) -> HealthResponse:
    """
    Health check endpoint.

    Reports ``degraded`` rather than failing when the database is unreachable,
    so probes can tell a sick process from a dead one.
    """
    try:
        db.execute(text("SELECT 1"))
        database = "ok"
    except SQLAlchemyError as exc:
        logger.warning("health_check_db_failed: %s", exc)
        database = "unreachable"
    return HealthResponse(
        status="healthy" if database == "ok" else "degraded",
        service="tutorslots-api",
        version=__version__,
        environment=settings.environment,
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        database=database,
    )


@router.get("/metrics", include_in_schema=False, response_class=Response, response_model=None)
def get_prometheus_metrics() -> Response:
    """Expose Prometheus metrics for scraping."""
    return Response(
        content=prometheus_metrics.get_metrics(),
        media_type=prometheus_metrics.get_content_type(),
        headers={"Cache-Control": "no-cache, no-store, must-revalidate"},
    )
