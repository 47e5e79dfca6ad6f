"""Client for the external pixel-art image provider.

This module provides the ImageGenerationClient class that handles all
communication with the GetImg-compatible text-to-image API. It includes:

- HTTP client with bearer authentication
- FLUX first, Stable Diffusion XL as a fallback model
- A breaker that stops calling the provider while it is failing or refusing us
- Per-model call statistics
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

import httpx

from pixelsynth.core.settings import SECOND_MS, settings
from pixelsynth.utils.time import Clock, now_ms

# Configure logger for this module
logger = logging.getLogger(__name__)

# HTTP status codes
HTTP_OK = 200
HTTP_BAD_REQUEST = 400
HTTP_UNAUTHORIZED = 401
HTTP_TOO_MANY_REQUESTS = 429
HTTP_INTERNAL_SERVER_ERROR = 500

# Provider answers that mean further calls are pointless for a while
BREAKER_STATUSES = frozenset({HTTP_UNAUTHORIZED, HTTP_TOO_MANY_REQUESTS})

FLUX_PATH = "/v1/flux-schnell/text-to-image"
SDXL_PATH = "/v1/stable-diffusion-xl/text-to-image"

FLUX_PROMPT_TEMPLATE = (
    "pixel art of {prompt}, 8-bit style, 16-bit graphics, retro game art, pixelated, "
    "low resolution, sprite art, video game style, pixel perfect, retro gaming aesthetic, "
    "synthwave colors, neon pixel art, detailed pixel work, game asset style"
)
SDXL_PROMPT_TEMPLATE = (
    "{prompt}, pixel art, 8bit, 16bit, retro, pixelated, low resolution, sprite, "
    "video game graphics, nintendo style, sega genesis style, arcade game, pixel perfect, "
    "blocky, chunky pixels, retro gaming, synthwave, neon colors, cyberpunk pixel art"
)
SDXL_NEGATIVE_PROMPT = (
    "high resolution, smooth, realistic, photorealistic, detailed, sharp, 3d, modern, "
    "clean lines, vector art, smooth gradients"
)
IMAGE_SIZE = 512


class ImageGenerationError(RuntimeError):
    """Base exception raised for image provider failures."""


class ImageGenerationDisabledError(ImageGenerationError):
    """Raised when generation is attempted without a configured API key."""


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


def trips_breaker(status_code: int) -> bool:
    """Return True if a provider status counts against the breaker.

    Server errors, a rejected API key and provider-side rate limiting all do;
    a 400 means the prompt was refused and says nothing about provider health.
    """
    return status_code >= HTTP_INTERNAL_SERVER_ERROR or status_code in BREAKER_STATUSES


class ProviderBreaker:
    """Stops calling the provider after consecutive failures.

    Once open, calls fail fast until `cooldown_ms` has passed on the injected
    clock. The breaker is then half-open: `trial_successes` successful calls
    close it, a single failure opens it again.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        cooldown_ms: int = 60 * SECOND_MS,
        trial_successes: int = 3,
        clock: Clock = now_ms,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.cooldown_ms = cooldown_ms
        self.trial_successes = trial_successes
        self._clock = clock
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._trial_passes = 0
        self._opened_at: int | None = None

    @property
    def state(self) -> BreakerState:
        if (
            self._state is BreakerState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.cooldown_ms
        ):
            self._state = BreakerState.HALF_OPEN
            self._trial_passes = 0
        return self._state

    def allows_request(self) -> bool:
        return self.state is not BreakerState.OPEN

    def record_success(self) -> None:
        if self.state is BreakerState.HALF_OPEN:
            self._trial_passes += 1
            if self._trial_passes < self.trial_successes:
                return
            self._state = BreakerState.CLOSED
            self._opened_at = None
        self._failures = 0

    def record_failure(self) -> None:
        self._failures += 1
        if self.state is BreakerState.HALF_OPEN or self._failures >= self.failure_threshold:
            self._state = BreakerState.OPEN
            self._opened_at = self._clock()
            logger.warning("Image provider breaker opened after %d failures", self._failures)

    def status(self) -> dict[str, Any]:
        return {
            "state": self.state.value,
            "consecutive_failures": self._failures,
            "opened_at": self._opened_at,
        }


@dataclass
class ModelStats:
    calls: int = 0
    successes: int = 0
    total_latency_ms: int = 0


@dataclass
class ProviderMetrics:
    """Call statistics per model, plus how often FLUX had to fall back."""

    models: dict[str, ModelStats] = field(default_factory=dict)
    errors: Counter[str] = field(default_factory=Counter)
    fallbacks: int = 0

    def record(self, model: str, latency_ms: int, error_type: str | None = None) -> None:
        stats = self.models.setdefault(model, ModelStats())
        stats.calls += 1
        stats.total_latency_ms += latency_ms
        if error_type is None:
            stats.successes += 1
        else:
            self.errors[error_type] += 1

    def snapshot(self) -> dict[str, Any]:
        calls = sum(stats.calls for stats in self.models.values())
        successes = sum(stats.successes for stats in self.models.values())
        return {
            "request_count": calls,
            "success_count": successes,
            "error_count": calls - successes,
            "success_rate": successes / calls * 100 if calls else 0.0,
            "fallback_count": self.fallbacks,
            "error_counts_by_type": dict(self.errors),
            "models": {
                name: {
                    "calls": stats.calls,
                    "successes": stats.successes,
                    "average_latency_ms": stats.total_latency_ms / stats.calls,
                }
                for name, stats in self.models.items()
            },
        }


@dataclass(frozen=True)
class ProviderConfig:
    """Immutable configuration for provider calls."""

    api_key: str | None
    base_url: str
    timeout_seconds: float


@dataclass(frozen=True)
class GenerationResult:
    """Outcome of one model call."""

    success: bool
    image_url: str | None = None
    error: str | None = None


def load_provider_config() -> ProviderConfig:
    """Build configuration object from global settings."""

    return ProviderConfig(
        api_key=settings.getimg_api_key,
        base_url=settings.getimg_base_url,
        timeout_seconds=float(settings.getimg_timeout_seconds),
    )


def _image_url_from_payload(payload: dict[str, Any]) -> str | None:
    if payload.get("url"):
        return str(payload["url"])
    if payload.get("image"):
        return f"data:image/jpeg;base64,{payload['image']}"
    return None


def _describe_status(status_code: int) -> str:
    if status_code == HTTP_UNAUTHORIZED:
        return "Invalid GetImg.ai API key. Please check your GETIMG_API_KEY environment variable."
    if status_code == HTTP_TOO_MANY_REQUESTS:
        return "Rate limit exceeded. Please try again later."
    if status_code == HTTP_BAD_REQUEST:
        return "Invalid request parameters. Please try a different prompt."
    return f"GetImg.ai API error: {status_code}"


class ImageGenerationClient:
    """HTTP client wrapper for the text-to-image provider."""

    def __init__(
        self,
        config: ProviderConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self.config = config or load_provider_config()
        self._transport = transport
        self._clock = clock
        self._client: httpx.AsyncClient | None = None
        self._client_lock = asyncio.Lock()
        self.breaker = ProviderBreaker(clock=clock)
        self._metrics = ProviderMetrics()

    @property
    def enabled(self) -> bool:
        return bool(self.config.api_key)

    async def _ensure_client(self) -> httpx.AsyncClient:
        if not self.enabled:
            raise ImageGenerationDisabledError(
                "GetImg.ai API key is not configured. "
                "Please set GETIMG_API_KEY environment variable."
            )

        async with self._client_lock:
            if self._client is None:
                self._client = httpx.AsyncClient(
                    base_url=self.config.base_url,
                    timeout=httpx.Timeout(self.config.timeout_seconds),
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                    transport=self._transport,
                )

        return self._client

    async def _post(self, model: str, path: str, payload: dict[str, Any]) -> httpx.Response:
        if not self.breaker.allows_request():
            raise ImageGenerationError(
                "Image provider circuit breaker is open - service unavailable"
            )

        client = await self._ensure_client()
        started = self._clock()
        try:
            response = await client.post(path, json=payload)
        except httpx.HTTPError as exc:
            self.breaker.record_failure()
            self._metrics.record(model, self._clock() - started, "network_error")
            raise ImageGenerationError(f"Image provider request failed: {exc}") from exc

        if trips_breaker(response.status_code):
            self.breaker.record_failure()
        else:
            self.breaker.record_success()
        error_type = None if response.status_code == HTTP_OK else f"http_{response.status_code}"
        self._metrics.record(model, self._clock() - started, error_type)
        return response

    async def _generate(self, model: str, path: str, payload: dict[str, Any]) -> GenerationResult:
        try:
            response = await self._post(model, path, payload)
        except ImageGenerationDisabledError:
            raise
        except ImageGenerationError as exc:
            return GenerationResult(success=False, error=f"{model} request failed: {exc}")

        if response.status_code != HTTP_OK:
            logger.warning("%s returned status %d", model, response.status_code)
            return GenerationResult(success=False, error=_describe_status(response.status_code))

        try:
            body = response.json()
        except ValueError:
            return GenerationResult(success=False, error=f"Unexpected response format from {model}")

        image_url = _image_url_from_payload(body) if isinstance(body, dict) else None
        if image_url is None:
            logger.error("Unexpected %s response format", model)
            return GenerationResult(success=False, error=f"No image data in {model} response")
        return GenerationResult(success=True, image_url=image_url)

    async def generate_flux(self, prompt: str) -> GenerationResult:
        """Generate pixel art with FLUX.1 schnell."""
        return await self._generate(
            "FLUX",
            FLUX_PATH,
            {
                "prompt": FLUX_PROMPT_TEMPLATE.format(prompt=prompt),
                "width": IMAGE_SIZE,
                "height": IMAGE_SIZE,
                "steps": 4,
                "guidance": 3.5,
                "output_format": "jpeg",
            },
        )

    async def generate_sdxl(self, prompt: str) -> GenerationResult:
        """Generate pixel art with Stable Diffusion XL."""
        return await self._generate(
            "SDXL",
            SDXL_PATH,
            {
                "prompt": SDXL_PROMPT_TEMPLATE.format(prompt=prompt),
                "negative_prompt": SDXL_NEGATIVE_PROMPT,
                "width": IMAGE_SIZE,
                "height": IMAGE_SIZE,
                "steps": 20,
                "guidance": 8.0,
                "output_format": "jpeg",
            },
        )

    async def generate_pixel_art(self, prompt: str) -> str:
        """Return an image URL for `prompt`, falling back from FLUX to SDXL.

        Raises:
            ImageGenerationDisabledError: If no API key is configured.
            ImageGenerationError: If both models fail.
        """
        result = await self.generate_flux(prompt)
        if not result.success:
            logger.info("FLUX failed, trying SDXL fallback: %s", result.error)
            self._metrics.fallbacks += 1
            result = await self.generate_sdxl(prompt)

        if not result.success or result.image_url is None:
            raise ImageGenerationError(result.error or "Failed to generate pixel art")
        return result.image_url

    async def health_check(self) -> dict[str, Any]:
        """Report provider configuration and breaker state without calling out."""
        if not self.enabled:
            return {
                "status": "disabled",
                "enabled": False,
                "error": "GETIMG_API_KEY is not configured",
            }
        return {
            "status": "healthy" if self.breaker.allows_request() else "unavailable",
            "enabled": True,
            "circuit_breaker": self.breaker.status(),
        }

    def get_metrics(self) -> dict[str, Any]:
        """Call counts, success rate, fallbacks and per-model latency."""
        return self._metrics.snapshot()

    async def close(self) -> None:
        """Clean up underlying HTTP client resources."""

        async with self._client_lock:
            if self._client is not None:
                await self._client.aclose()
                self._client = None


class _ImageClientSingleton:
    """Singleton wrapper for ImageGenerationClient."""

    _instance: ImageGenerationClient | None = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> ImageGenerationClient:
        """Get or create the singleton client instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = ImageGenerationClient()
            return cls._instance


def get_image_client() -> ImageGenerationClient:
    """Return a singleton image generation client."""
    return _ImageClientSingleton.get_instance()
