# backend/tutorslots/main.py
from __future__ import annotations

from contextlib import asynccontextmanager
import logging
from typing import AsyncGenerator

from fastapi import APIRouter, FastAPI
from fastapi.middleware.cors import CORSMiddleware

from . import __version__
from .core.config import settings
from .database import Base, engine
from .errors import register_error_handlers
from .routes.v1 import (
    conflicts as conflicts_v1,
    health as health_v1,
    recurring as recurring_v1,
    slots as slots_v1,
    waitlist as waitlist_v1,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def app_lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Handle application startup/shutdown without deprecated events."""
    logger.info("tutorslots API starting up...")
    logger.info(f"Environment: {settings.environment}")

    # create_all only adds missing tables
    from . import models  # noqa: F401

    Base.metadata.create_all(bind=engine)

    yield

    logger.info("tutorslots API shutting down...")
    engine.dispose()


def create_app() -> FastAPI:
    app = FastAPI(
        title="tutorslots API",
        description="Scheduling core for tutoring: slots, conflicts, recurring series and waitlists",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=app_lifespan,
    )
    register_error_handlers(app)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["*"],
    )

    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(conflicts_v1.router, prefix="/conflicts")
    api_v1.include_router(slots_v1.router, prefix="/slots")
    api_v1.include_router(recurring_v1.router, prefix="/recurring")
    api_v1.include_router(waitlist_v1.router, prefix="/waitlist")
    app.include_router(api_v1)
    app.include_router(health_v1.router)
    return app


app = create_app()
