# src/pixelsynth/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .admission import GenerateRequest, GenerateResponse, RateLimitRequest

__all__ = ["GenerateRequest", "GenerateResponse", "RateLimitRequest"]
