# src/pixelsynth/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .generate import router as generate_router
from .rate_limit import router as rate_limit_router
from .system import router as system_router

__all__ = [
    "generate_router",
    "rate_limit_router",
    "system_router",
]
