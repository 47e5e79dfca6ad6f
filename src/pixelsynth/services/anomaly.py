"""Behavioral and header-based anomaly detection."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

from pixelsynth.models import ClientRecord

BURST_ATTEMPT_THRESHOLD: Final[int] = 3
BURST_WINDOW_MS: Final[int] = 60_000
MIN_USER_AGENT_LENGTH: Final[int] = 10
CLI_SIGNATURES: Final[tuple[str, ...]] = ("curl", "wget")
BROWSER_HEADERS: Final[tuple[str, ...]] = ("accept", "accept-language", "accept-encoding")
MAX_MISSING_BROWSER_HEADERS: Final[int] = 1


def is_suspicious(record: ClientRecord, headers: Mapping[str, str], now_ms: int) -> bool:
    """Return True if the request or the record's recent history looks automated.

    The record is read, never mutated.
    """
    if (
        record.attempt_count > BURST_ATTEMPT_THRESHOLD
        and now_ms - record.last_attempt_at < BURST_WINDOW_MS
    ):
        return True

    user_agent = headers.get("user-agent", "")
    if len(user_agent) < MIN_USER_AGENT_LENGTH:
        return True
    if any(signature in user_agent for signature in CLI_SIGNATURES):
        return True

    missing = [name for name in BROWSER_HEADERS if not headers.get(name)]
    return len(missing) > MAX_MISSING_BROWSER_HEADERS
