import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from realtime.connection_manager import ConnectionManager

from .get_db import Base, async_engine
from .settings import settings
from .throttling import rate_limiter_manager

logger = logging.getLogger("startup")


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Waiting for application startup...")

    app.state.connections = ConnectionManager()

    if settings.AUTO_CREATE_TABLES:
        try:
            import models.models  # noqa: F401

            async with async_engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("Database tables ensured.")
        except Exception:
            logger.exception("Failed to create database tables")

    try:
        await rate_limiter_manager.connect()
    except Exception:
        logger.exception("Rate limiter connection failed")

    logger.info("Application startup complete.")

    yield

    try:
        await rate_limiter_manager.close()
    except Exception:
        logger.exception("Failed to close rate limiter")

    app.state.connections = None
    await async_engine.dispose()
    logger.info("Application shutdown complete.")
