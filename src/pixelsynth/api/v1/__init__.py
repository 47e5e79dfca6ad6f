# src/pixelsynth/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import generate_router, rate_limit_router, system_router

__all__ = [
    "generate_router",
    "rate_limit_router",
    "system_router",
]
