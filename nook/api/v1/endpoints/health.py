"""
Liveness and dependency checks. No authentication; nothing secret is reported.
"""
from fastapi import APIRouter, HTTPException

from nook.core.config import settings
from nook.core.database import database
from nook.core.logging import logger
from nook.services.sync_lock_service import family_sync_locks

router = APIRouter()

@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "version": settings.VERSION,
        "simplemdm_configured": bool(settings.SIMPLEMDM_API_KEY),
        "sync_locks": "redis" if family_sync_locks.redis_client is not None else "local",
    }

@router.get("/health/db")
async def database_health_check():
    """503 when the ledger database cannot answer a trivial query."""
    try:
        result = await database.fetch_val("SELECT 1")
    except Exception as e:
        logger.error(f"Ledger database unreachable: {e}")
        raise HTTPException(status_code=503, detail=f"Database connection failed: {e}")
    if result != 1:
        raise HTTPException(status_code=503, detail="Database returned an unexpected result")
    return {"status": "healthy", "database": "connected"}
