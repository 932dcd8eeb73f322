# /app/utils/lifecycle.py

import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI

from app.utils.logging import setup_logging
from app.utils.session_lock import session_locks
from app.services.db_service import db_service
from app.services.channel_service import channel_service
from app.config.settings import settings, validate_environment

# This file manages the application's lifespan: startup validates the
# environment and prepares the database, shutdown closes every client.

logger = logging.getLogger(__name__)

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager for startup and shutdown events."""
    setup_logging()
    validate_environment(settings)

    logger.info("Application starting up...")

    await db_service.create_indexes()

    if not settings.CHANNEL_REGISTRY:
        logger.warning("No outbound channel configured; bot messages will only be recorded.")

    logger.info("Application startup complete. Ready to accept requests.")

    yield  # Application is now running

    logger.info("Application shutting down...")

    await channel_service.close()
    await session_locks.close()
    if db_service.client:
        db_service.client.close()
