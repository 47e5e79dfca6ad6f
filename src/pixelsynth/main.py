# src/pixelsynth/main.py
"""Main entry point for the PixelSynth application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware

from pixelsynth.api.v1 import generate_router, rate_limit_router, system_router
from pixelsynth.core.settings import settings
from pixelsynth.services.image_generation import get_image_client

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title="PixelSynth API",
    description="AI pixel-art generation with abuse-resistant free usage",
    version=settings.app_version,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=settings.cors_allow_methods,
    allow_headers=settings.cors_allow_headers,
)

# Add GZip middleware for compression
app.add_middleware(GZipMiddleware)

# Include API routers
app.include_router(rate_limit_router, prefix="/api/v1")
app.include_router(generate_router, prefix="/api/v1")
app.include_router(system_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    if not get_image_client().enabled:
        logger.warning("GETIMG_API_KEY is not set; generation requests will fail")


@app.on_event("shutdown")
async def on_shutdown() -> None:
    await get_image_client().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": "PixelSynth API",
        "version": settings.app_version,
        "description": "AI pixel-art generation with abuse-resistant free usage",
        "docs": "/docs",
        "redoc": "/redoc",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("pixelsynth.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
