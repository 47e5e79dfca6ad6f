"""Schemas for admission checks and pixel-art generation."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class RateLimitRequest(BaseModel):
    """Request body for the admission check/consume endpoint."""

    prompt: str | None = Field(default=None, description="Prompt to validate, if any.")
    action: str | None = Field(default=None, description="Either 'check' or 'consume'.")


class GenerateRequest(BaseModel):
    """Request body for pixel-art generation."""

    prompt: str | None = None


class GenerateResponse(BaseModel):
    """Successful generation payload."""

    model_config = ConfigDict(populate_by_name=True)

    image_url: str = Field(..., alias="imageUrl")
    prompt: str
