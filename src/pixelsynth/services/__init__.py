# src/pixelsynth/services/__init__.py
"""Business logic services for the PixelSynth application."""

from .admission import AdmissionController, AdmissionRequest, AdmissionResult, RejectionReason
from .image_generation import ImageGenerationClient, ImageGenerationError
from .ledger import ClientStore, InMemoryClientStore
from .replay import ReplayProtectionService

__all__ = [
    "AdmissionController",
    "AdmissionRequest",
    "AdmissionResult",
    "RejectionReason",
    "ClientStore",
    "InMemoryClientStore",
    "ImageGenerationClient",
    "ImageGenerationError",
    "ReplayProtectionService",
]
