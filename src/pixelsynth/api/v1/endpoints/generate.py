"""Pixel-art generation endpoint guarded by admission control."""

from __future__ import annotations

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from pixelsynth.api.v1.dependencies import (
    AdmissionControllerDep,
    AdmissionRequestDep,
    ImageClientDep,
)
from pixelsynth.schemas.admission import GenerateRequest, GenerateResponse
from pixelsynth.services.image_generation import (
    ImageGenerationDisabledError,
    ImageGenerationError,
)
from pixelsynth.utils.time import utcnow_iso

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/generate-pixel-art", tags=["generation"])


@router.post("")
async def generate_pixel_art(
    body: GenerateRequest,
    admission_request: AdmissionRequestDep,
    controller: AdmissionControllerDep,
    image_client: ImageClientDep,
) -> JSONResponse:
    """Consume one free generation and request an image from the provider.

    Args:
        body: Request body carrying the prompt
        admission_request: Header-derived request metadata
        controller: Process-wide admission controller
        image_client: Client for the external image provider

    Returns:
        `{imageUrl, prompt}` on success, an error payload otherwise
    """
    prompt = (body.prompt or "").strip()
    if not prompt:
        return JSONResponse(
            {"error": "Prompt is required and must be a non-empty string"},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    try:
        result = controller.evaluate(admission_request, "consume", prompt)
        if not result.allowed:
            return JSONResponse(
                {
                    "error": result.message,
                    "reason": result.reason.value if result.reason else None,
                    "generationsLeft": result.generations_left,
                    "resetTime": result.reset_time,
                },
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            )

        image_url = await image_client.generate_pixel_art(prompt)
    except ImageGenerationDisabledError as err:
        logger.error("Image provider is not configured")
        return JSONResponse(
            {"error": str(err)},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    except ImageGenerationError as err:
        logger.warning("Image generation failed: %s", err)
        return JSONResponse(
            {"error": str(err) or "Failed to generate image from GetImg.ai"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )
    except Exception:
        logger.exception("Pixel art generation error")
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    response = GenerateResponse(image_url=image_url, prompt=prompt)
    return JSONResponse(response.model_dump(by_alias=True))


@router.get("")
async def generation_health() -> dict[str, str]:
    """Health check for the generation API."""
    return {
        "status": "OK",
        "message": "PixelSynth API is running",
        "timestamp": utcnow_iso(),
    }
