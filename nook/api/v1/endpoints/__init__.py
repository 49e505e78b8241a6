"""API v1 endpoints."""

__all__ = [
    "devices",
    "families",
    "health",
    "profiles",
    "sync",
]
