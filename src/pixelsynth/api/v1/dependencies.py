"""Shared API dependencies for admission and provider access."""

from typing import Annotated

from fastapi import Depends, Request

from pixelsynth.services.admission import (
    AdmissionController,
    AdmissionRequest,
    get_admission_controller,
)
from pixelsynth.services.image_generation import ImageGenerationClient, get_image_client


def get_admission_request(request: Request) -> AdmissionRequest:
    """Extract admission metadata from the incoming request headers.

    Args:
        request: The incoming Starlette request

    Returns:
        Framework-independent request metadata with lower-cased header names
    """
    return AdmissionRequest.from_headers(request.headers)


def get_admission_controller_dep() -> AdmissionController:
    """Get the admission controller for dependency injection."""
    return get_admission_controller()


def get_image_client_dep() -> ImageGenerationClient:
    """Get the image generation client for dependency injection."""
    return get_image_client()


AdmissionRequestDep = Annotated[AdmissionRequest, Depends(get_admission_request)]
AdmissionControllerDep = Annotated[AdmissionController, Depends(get_admission_controller_dep)]
ImageClientDep = Annotated[ImageGenerationClient, Depends(get_image_client_dep)]
