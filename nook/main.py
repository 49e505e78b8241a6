# Logging goes first so import-time messages are captured
from nook.core.logging import setup_logging
setup_logging()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager

from nook.core.config import settings
from nook.core.database import database, log_database_config
from nook.core.logging import logger
from nook.services.simplemdm_service import simplemdm_service
from nook.services.sync_lock_service import family_sync_locks
from nook.api.v1.api import api_router

def log_startup_settings():
    """Summarize the settings that decide how this instance talks to the outside world."""
    logger.info(f"SimpleMDM endpoint: {settings.SIMPLEMDM_BASE_URL} (timeout {settings.SIMPLEMDM_TIMEOUT_SECONDS}s)")
    logger.info(f"SimpleMDM API key: {'SET' if settings.SIMPLEMDM_API_KEY else 'NOT_SET'}")
    logger.info(
        f"Sync lock Redis: {settings.REDIS_HOST}:{settings.REDIS_PORT}/{settings.REDIS_DB} "
        f"(lock timeout {settings.SYNC_LOCK_TIMEOUT_SECONDS}s)"
    )
    log_database_config()

@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("=== NOOK STARTUP ===")
    log_startup_settings()

    try:
        await database.connect()
    except Exception as e:
        logger.error(f"Database connection failed ({type(e).__name__}): {e}")
        raise
    logger.info("Database connected")

    # Without Redis, sync locks only serialize work inside this process
    await family_sync_locks.connect()

    if not settings.SIMPLEMDM_API_KEY:
        logger.warning("SIMPLEMDM_API_KEY is not set; every SimpleMDM call will be rejected")

    logger.info("=== NOOK READY ===")
    yield

    logger.info("=== NOOK SHUTDOWN ===")
    for name, close in (
        ("SimpleMDM client", simplemdm_service.aclose),
        ("sync locks", family_sync_locks.disconnect),
        ("database", database.disconnect),
    ):
        try:
            await close()
        except Exception as e:
            logger.error(f"Error closing {name}: {e}")
    logger.info("Shutdown complete")

def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.PROJECT_NAME,
        version=settings.VERSION,
        description=settings.DESCRIPTION,
        lifespan=lifespan
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"]
    )

    app.include_router(api_router, prefix=settings.API_V1_STR)

    return app

app = create_app()
