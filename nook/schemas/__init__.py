"""Pydantic schemas for API validation."""

__all__ = [
    "base",
    "device",
    "enrollment",
    "family",
    "profile",
    "sync",
]
