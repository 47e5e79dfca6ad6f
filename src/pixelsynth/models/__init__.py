# src/pixelsynth/models/__init__.py
"""In-memory data models for the PixelSynth admission layer."""

from .client_record import ClientRecord

__all__ = ["ClientRecord"]
