"""Admission check/consume and admission statistics endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse

from pixelsynth.api.v1.dependencies import AdmissionControllerDep, AdmissionRequestDep
from pixelsynth.schemas.admission import RateLimitRequest
from pixelsynth.services.admission import ACTIONS, RejectionReason

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/rate-limit", tags=["rate-limit"])


def rejection_status(reason: RejectionReason | None) -> int:
    """Map a rejection reason to its HTTP status code."""
    if reason is RejectionReason.INVALID_PROMPT:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_429_TOO_MANY_REQUESTS


@router.post("")
async def check_rate_limit(
    body: RateLimitRequest,
    admission_request: AdmissionRequestDep,
    controller: AdmissionControllerDep,
) -> JSONResponse:
    """Check, or check and consume, a free generation for the caller.

    Args:
        body: Requested action and optional prompt
        admission_request: Header-derived request metadata
        controller: Process-wide admission controller

    Returns:
        The admission result; 400 for invalid prompts, 429 for other rejections
    """
    if body.action not in ACTIONS:
        return JSONResponse({"error": "Invalid action"}, status_code=status.HTTP_400_BAD_REQUEST)

    try:
        result = controller.evaluate(
            admission_request, body.action, body.prompt or ""  # type: ignore[arg-type]
        )
    except Exception:
        logger.exception("Rate limit check error")
        return JSONResponse(
            {"error": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    if not result.allowed:
        return JSONResponse(result.to_dict(), status_code=rejection_status(result.reason))
    return JSONResponse(result.to_dict())


@router.get("")
async def get_rate_limit_stats(controller: AdmissionControllerDep) -> dict[str, Any]:
    """Return aggregate admission statistics for the admin dashboard."""
    return controller.stats()
