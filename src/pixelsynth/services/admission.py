"""Admission control for free pixel-art generations.

The controller turns one request into an allow/deny decision. Protocol checks
(timestamp, nonce, origin, optional signature) run first and never touch the
ledger. The remaining policy steps run under the per-key lock of the client's
ledger entry, in a fixed order:

    window rollover -> anomaly scoring -> active block -> block expiry ->
    prompt validation -> monthly quota -> hourly attempts -> consume

Rejections are returned as `AdmissionResult` values carrying a machine-readable
reason, never raised.
"""

from __future__ import annotations

import logging
import math
import threading
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

from pixelsynth.core.security import verify_request_signature
from pixelsynth.core.settings import HOUR_MS, MINUTE_MS, RateLimitConfig, settings
from pixelsynth.models import ClientRecord
from pixelsynth.services.anomaly import is_suspicious
from pixelsynth.services.fingerprint import composite_key, create_device_fingerprint
from pixelsynth.services.identity import resolve_client_identity
from pixelsynth.services.ledger import ClientStore, InMemoryClientStore
from pixelsynth.services.prompt_validation import is_valid_prompt
from pixelsynth.services.replay import ReplayProtectionService, build_replay_service
from pixelsynth.utils.time import Clock, now_ms, utcnow_iso

logger = logging.getLogger(__name__)

Action = Literal["check", "consume"]
ACTIONS: tuple[Action, ...] = ("check", "consume")

_LOG_KEY_CHARS = 24


class RejectionReason(str, Enum):
    """Machine-readable reason codes for denied admissions."""

    INVALID_TIMESTAMP = "invalid_timestamp"
    REPLAY_ATTACK = "replay_attack"
    INVALID_ORIGIN = "invalid_origin"
    INVALID_SIGNATURE = "invalid_signature"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    RATE_LIMITED = "rate_limited"
    INVALID_PROMPT = "invalid_prompt"
    MONTHLY_LIMIT = "monthly_limit"


@dataclass(frozen=True)
class AdmissionRequest:
    """Request metadata the controller needs, independent of the web framework."""

    headers: Mapping[str, str] = field(default_factory=dict)
    timestamp: int = 0
    nonce: str = ""
    origin: str = ""
    signature: str | None = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> AdmissionRequest:
        """Build a request from raw headers, reading the x-timestamp/x-nonce protocol."""
        lowered = {name.lower(): value for name, value in headers.items()}
        try:
            timestamp = int(lowered.get("x-timestamp", "0") or "0")
        except ValueError:
            timestamp = 0
        return cls(
            headers=lowered,
            timestamp=timestamp,
            nonce=lowered.get("x-nonce", ""),
            origin=lowered.get("origin", ""),
            signature=lowered.get("x-signature"),
        )


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of an admission evaluation."""

    allowed: bool
    message: str
    generations_left: int
    reset_time: int
    reason: RejectionReason | None = None
    suspicious: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        """Serialize with the camelCase keys used on the wire, omitting unset fields."""
        payload: dict[str, Any] = {
            "allowed": self.allowed,
            "message": self.message,
            "generationsLeft": self.generations_left,
            "resetTime": self.reset_time,
        }
        if self.reason is not None:
            payload["reason"] = self.reason.value
        if self.suspicious is not None:
            payload["suspicious"] = self.suspicious
        return payload


def _describe_duration(duration_ms: int) -> str:
    if duration_ms % HOUR_MS == 0:
        hours = duration_ms // HOUR_MS
        return "1 hour" if hours == 1 else f"{hours} hours"
    minutes = math.ceil(duration_ms / MINUTE_MS)
    return f"{minutes} minutes"


class AdmissionController:
    """Orchestrates identity, fingerprint, ledger and heuristics into a decision."""

    def __init__(
        self,
        secret: str,
        limits: RateLimitConfig | None = None,
        store: ClientStore | None = None,
        replay_service: ReplayProtectionService | None = None,
        clock: Clock = now_ms,
    ) -> None:
        self._secret = secret
        self.limits = limits or RateLimitConfig()
        self.store: ClientStore = store if store is not None else InMemoryClientStore()
        self.replay_service = replay_service or ReplayProtectionService()
        self._clock = clock

    def client_key(self, headers: Mapping[str, str]) -> str:
        """Return the composite ledger key for a set of lower-case headers."""
        identity = resolve_client_identity(headers)
        fingerprint = create_device_fingerprint(headers, self._secret, identity)
        return composite_key(identity, fingerprint)

    def evaluate(
        self,
        request: AdmissionRequest,
        action: Action,
        prompt: str | None = None,
    ) -> AdmissionResult:
        """Decide whether the request may proceed, updating the ledger.

        Args:
            request: Header-derived request metadata.
            action: "consume" spends a generation when allowed; "check" is a dry run.
            prompt: Optional prompt; validated only when non-empty.

        Returns:
            The admission decision.
        """
        if action not in ACTIONS:
            raise ValueError(f"Unknown admission action: {action!r}")

        now = self._clock()
        rejection = self._check_protocol(request, now)
        if rejection is not None:
            logger.info("Admission rejected before ledger lookup: %s", rejection.message)
            return rejection

        key = self.client_key(request.headers)
        with self.store.lock(key):
            record = self.store.get(key) or ClientRecord.new(now)
            result = self._apply_policy(record, request.headers, action, prompt or "", now)
            self.store.put(key, record)

        if not result.allowed:
            logger.info(
                "Admission rejected for %s: %s",
                key[:_LOG_KEY_CHARS],
                result.reason.value if result.reason else "unknown",
            )
        return result

    def _check_protocol(self, request: AdmissionRequest, now: int) -> AdmissionResult | None:
        if abs(now - request.timestamp) > self.limits.max_clock_skew_ms:
            return self._protocol_rejection(
                RejectionReason.INVALID_TIMESTAMP, "Request timestamp is invalid.", now
            )

        if not self.replay_service.check_and_register(request.nonce, now):
            return self._protocol_rejection(
                RejectionReason.REPLAY_ATTACK, "Request replay detected.", now
            )

        if request.origin and request.origin not in self.limits.allowed_origins:
            return self._protocol_rejection(
                RejectionReason.INVALID_ORIGIN, "Request from unauthorized origin.", now
            )

        if self.limits.require_request_signature and not verify_request_signature(
            self._secret,
            request.signature,
            timestamp=request.timestamp,
            nonce=request.nonce,
            user_agent=request.headers.get("user-agent", ""),
            origin=request.origin,
        ):
            return self._protocol_rejection(
                RejectionReason.INVALID_SIGNATURE, "Request signature is invalid.", now
            )
        return None

    def _protocol_rejection(
        self, reason: RejectionReason, message: str, now: int
    ) -> AdmissionResult:
        return AdmissionResult(
            allowed=False,
            reason=reason,
            message=message,
            generations_left=0,
            reset_time=now + self.limits.monthly_reset_ms,
            suspicious=True,
        )

    def _generations_left(self, record: ClientRecord) -> int:
        return max(0, self.limits.free_generations_per_month - record.generations_used)

    def _window_end(self, record: ClientRecord) -> int:
        return record.window_start + self.limits.monthly_reset_ms

    def _apply_policy(
        self,
        record: ClientRecord,
        headers: Mapping[str, str],
        action: Action,
        prompt: str,
        now: int,
    ) -> AdmissionResult:
        limits = self.limits

        if now - record.window_start > limits.monthly_reset_ms:
            record.generations_used = 0
            record.attempt_count = 0
            record.window_start = now
            record.suspicion_score = max(0, record.suspicion_score - 1)

        if is_suspicious(record, headers, now):
            record.suspicion_score += 1
            if record.suspicion_score >= limits.suspicious_threshold:
                record.blocked = True
                record.blocked_until = now + limits.suspicious_block_ms
                logger.warning(
                    "Blocking client after suspicion score %d", record.suspicion_score
                )
                return AdmissionResult(
                    allowed=False,
                    reason=RejectionReason.SUSPICIOUS_ACTIVITY,
                    message="Suspicious activity detected. Account temporarily blocked.",
                    generations_left=0,
                    reset_time=record.blocked_until,
                    suspicious=True,
                )

        if record.is_blocked_at(now):
            remaining_minutes = math.ceil((record.blocked_until - now) / MINUTE_MS)
            return AdmissionResult(
                allowed=False,
                reason=RejectionReason.RATE_LIMITED,
                message=f"Account blocked. Please try again in {remaining_minutes} minutes.",
                generations_left=self._generations_left(record),
                reset_time=record.blocked_until,
            )

        if record.blocked:
            record.blocked = False
            record.blocked_until = 0
            record.attempt_count = 0

        if prompt and not is_valid_prompt(prompt):
            record.attempt_count += 1
            record.suspicion_score += 1
            return AdmissionResult(
                allowed=False,
                reason=RejectionReason.INVALID_PROMPT,
                message="Please enter a valid prompt (3-500 characters, descriptive text).",
                generations_left=self._generations_left(record),
                reset_time=self._window_end(record),
            )

        if record.generations_used >= limits.free_generations_per_month:
            return AdmissionResult(
                allowed=False,
                reason=RejectionReason.MONTHLY_LIMIT,
                message="Monthly free generation limit reached. Purchase credits to continue.",
                generations_left=0,
                reset_time=self._window_end(record),
            )

        if record.last_attempt_at > now - limits.cooldown_period_ms:
            record.attempt_count += 1
        else:
            record.attempt_count = 1
        record.last_attempt_at = now

        if record.attempt_count > limits.max_attempts_per_hour:
            record.blocked = True
            record.blocked_until = now + limits.cooldown_period_ms
            logger.warning("Blocking client after %d attempts", record.attempt_count)
            return AdmissionResult(
                allowed=False,
                reason=RejectionReason.RATE_LIMITED,
                message=(
                    "Too many generation attempts. Please try again in "
                    f"{_describe_duration(limits.cooldown_period_ms)}."
                ),
                generations_left=self._generations_left(record),
                reset_time=record.blocked_until,
            )

        if action == "consume":
            record.generations_used += 1

        generations_left = self._generations_left(record)
        if generations_left > 0:
            message = f"{generations_left} free generations remaining this month."
        else:
            message = "This was your last free generation this month."
        return AdmissionResult(
            allowed=True,
            message=message,
            generations_left=generations_left,
            reset_time=self._window_end(record),
        )

    def stats(self) -> dict[str, Any]:
        """Return read-only counters describing the ledger and replay store."""
        now = self._clock()
        records = self.store.values()
        return {
            "totalUsers": len(records),
            "timestamp": utcnow_iso(),
            "limits": self.limits.as_dict(),
            "security": {
                "nonceStoreSize": len(self.replay_service),
                "suspiciousBlocks": sum(1 for r in records if r.suspicion_score > 0),
                "activeBlocks": sum(1 for r in records if r.is_blocked_at(now)),
            },
        }


class _AdmissionControllerSingleton:
    """Singleton wrapper for AdmissionController."""

    _instance: AdmissionController | None = None
    _lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> AdmissionController:
        """Get or create the process-wide controller."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = AdmissionController(
                    secret=settings.secret_key,
                    limits=settings.rate_limits,
                    replay_service=build_replay_service(),
                )
            return cls._instance

    @classmethod
    def reset(cls) -> None:
        with cls._lock:
            cls._instance = None


def get_admission_controller() -> AdmissionController:
    """Return the process-wide admission controller."""
    return _AdmissionControllerSingleton.get_instance()


def reset_admission_controller() -> None:
    """Drop the process-wide controller so the next call builds a fresh one."""
    _AdmissionControllerSingleton.reset()
