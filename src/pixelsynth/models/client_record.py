# src/pixelsynth/models/client_record.py
"""Per-client quota ledger entry."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class ClientRecord:
    """Counters and timers tracked for one composite identity key.

    All timestamps are epoch milliseconds; zero means "never".
    """

    generations_used: int = 0
    window_start: int = 0
    attempt_count: int = 0
    last_attempt_at: int = 0
    blocked: bool = False
    blocked_until: int = 0
    suspicion_score: int = 0
    first_seen_at: int = 0

    @classmethod
    def new(cls, now_ms: int) -> ClientRecord:
        """Return a fresh record anchored at `now_ms`."""
        return cls(window_start=now_ms, first_seen_at=now_ms)

    def is_blocked_at(self, now_ms: int) -> bool:
        """Return True while an active block covers `now_ms`."""
        return self.blocked and now_ms < self.blocked_until
