"""Application settings and configuration.

This module defines all configuration options for the PixelSynth Stage service.
Settings are loaded from environment variables with sensible defaults.
"""

from dataclasses import dataclass

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    Settings can be overridden via environment variables or .env files.
    """

    # Application metadata
    app_name: str = Field(default="PixelSynth Stage", alias="APP_NAME")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    debug: bool = Field(default=False, alias="DEBUG")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    # Server-held secret for fingerprints and request signatures
    secret_key: str = Field(alias="RATE_LIMIT_SECRET")

    # Request admission guards
    allowed_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="ALLOWED_ORIGINS",
    )
    max_clock_skew_ms: int = Field(default=30 * SECOND_MS, alias="MAX_CLOCK_SKEW_MS")
    nonce_expiry_ms: int = Field(default=5 * MINUTE_MS, alias="NONCE_EXPIRY_MS")
    nonce_store_capacity: int = Field(default=10_000, alias="NONCE_STORE_CAPACITY")
    require_request_signature: bool = Field(
        default=False,
        alias="REQUIRE_REQUEST_SIGNATURE",
    )

    # Free usage quota
    free_generations_per_month: int = Field(default=3, alias="FREE_GENERATIONS_PER_MONTH")
    max_attempts_per_hour: int = Field(default=10, alias="MAX_ATTEMPTS_PER_HOUR")
    cooldown_period_ms: int = Field(default=HOUR_MS, alias="COOLDOWN_PERIOD_MS")
    monthly_reset_ms: int = Field(default=30 * DAY_MS, alias="MONTHLY_RESET_MS")
    suspicious_block_ms: int = Field(default=DAY_MS, alias="SUSPICIOUS_BLOCK_MS")
    suspicious_threshold: int = Field(default=5, alias="SUSPICIOUS_THRESHOLD")

    # External image provider (GetImg-compatible API)
    getimg_api_key: str | None = Field(default=None, alias="GETIMG_API_KEY")
    getimg_base_url: str = Field(default="https://api.getimg.ai", alias="GETIMG_BASE_URL")
    getimg_timeout_seconds: float = Field(default=60.0, alias="GETIMG_TIMEOUT_SECONDS")

    # CORS configuration for web frontend access
    cors_origins: list[str] = Field(
        default=["http://localhost:3000"],
        alias="CORS_ORIGINS",
    )
    cors_allow_credentials: bool = Field(default=True, alias="CORS_ALLOW_CREDENTIALS")
    cors_allow_methods: list[str] = Field(
        default=["GET", "POST", "OPTIONS"],
        alias="CORS_ALLOW_METHODS",
    )
    cors_allow_headers: list[str] = Field(
        default=["*"],
        alias="CORS_ALLOW_HEADERS",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        validate_assignment=True,
        extra="ignore",
    )

    @property
    def rate_limits(self) -> "RateLimitConfig":
        """Return the admission limits as an immutable value object."""
        return RateLimitConfig(
            free_generations_per_month=self.free_generations_per_month,
            max_attempts_per_hour=self.max_attempts_per_hour,
            cooldown_period_ms=self.cooldown_period_ms,
            monthly_reset_ms=self.monthly_reset_ms,
            suspicious_block_ms=self.suspicious_block_ms,
            suspicious_threshold=self.suspicious_threshold,
            max_clock_skew_ms=self.max_clock_skew_ms,
            allowed_origins=tuple(self.allowed_origins),
            require_request_signature=self.require_request_signature,
        )


@dataclass(frozen=True)
class RateLimitConfig:
    """Immutable limits consumed by the admission controller."""

    free_generations_per_month: int = 3
    max_attempts_per_hour: int = 10
    cooldown_period_ms: int = HOUR_MS
    monthly_reset_ms: int = 30 * DAY_MS
    suspicious_block_ms: int = DAY_MS
    suspicious_threshold: int = 5
    max_clock_skew_ms: int = 30 * SECOND_MS
    allowed_origins: tuple[str, ...] = ("http://localhost:3000",)
    require_request_signature: bool = False

    def as_dict(self) -> dict[str, object]:
        """Return the public limit constants keyed the way clients expect them."""
        return {
            "FREE_GENERATIONS_PER_MONTH": self.free_generations_per_month,
            "MAX_ATTEMPTS_PER_HOUR": self.max_attempts_per_hour,
            "COOLDOWN_PERIOD_MS": self.cooldown_period_ms,
            "MONTHLY_RESET_MS": self.monthly_reset_ms,
            "SUSPICIOUS_BLOCK_MS": self.suspicious_block_ms,
        }


settings = Settings()  # type: ignore[call-arg]
