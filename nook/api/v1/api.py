from fastapi import APIRouter

from .endpoints import devices, families, health, profiles, sync

api_router = APIRouter()

# Note: These routes are mounted under settings.API_V1_STR by main.py
api_router.include_router(health.router, tags=["health"])
api_router.include_router(families.router, prefix="/families", tags=["families"])
api_router.include_router(profiles.router, prefix="/profiles", tags=["profiles"])
api_router.include_router(devices.router, prefix="/devices", tags=["devices"])
api_router.include_router(sync.router, prefix="/sync", tags=["sync"])
