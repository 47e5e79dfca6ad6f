"""System and transparency endpoints for the PixelSynth API."""

from __future__ import annotations

from fastapi import APIRouter

from pixelsynth.api.v1.dependencies import AdmissionControllerDep, ImageClientDep
from pixelsynth.core.settings import settings

router = APIRouter(prefix="/system", tags=["system", "transparency"])


@router.get("/config")
async def get_public_config(controller: AdmissionControllerDep) -> dict[str, object]:
    """Return a sanitized snapshot of public runtime configuration.

    Excludes secrets and API keys; suitable for transparency UIs.
    """
    limits = controller.limits
    return {
        "app": {
            "name": settings.app_name,
            "version": settings.app_version,
            "debug": settings.debug,
        },
        "limits": limits.as_dict(),
        "security": {
            "max_clock_skew_ms": limits.max_clock_skew_ms,
            "suspicious_threshold": limits.suspicious_threshold,
            "allowed_origins": list(limits.allowed_origins),
            "require_request_signature": limits.require_request_signature,
            "nonce_ttl_ms": controller.replay_service.ttl_ms,
            "nonce_capacity": controller.replay_service.capacity,
        },
    }


@router.get("/provider/health")
async def get_provider_health(image_client: ImageClientDep) -> dict[str, object]:
    """Image provider configuration and circuit breaker status."""
    return await image_client.health_check()


@router.get("/provider/metrics")
async def get_provider_metrics(image_client: ImageClientDep) -> dict[str, object]:
    """Image provider call metrics."""
    return image_client.get_metrics()
