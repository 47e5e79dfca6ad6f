"""Replay protection for admission requests.

Nonces expire individually after a TTL. When the set grows past its capacity,
expired nonces are pruned first and then the oldest nonces are evicted, so an
overflow never reopens the replay window for every recent request at once.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from threading import Lock
from typing import Final

from pixelsynth.core.settings import settings
from pixelsynth.utils.time import now_ms

logger = logging.getLogger(__name__)

DEFAULT_NONCE_TTL_MS: Final[int] = 5 * 60 * 1000
DEFAULT_CAPACITY: Final[int] = 10_000


class ReplayProtectionService:
    """Service preventing replay attacks using client nonces."""

    def __init__(
        self,
        ttl_ms: int = DEFAULT_NONCE_TTL_MS,
        capacity: int = DEFAULT_CAPACITY,
    ) -> None:
        if ttl_ms <= 0 or capacity <= 0:
            raise ValueError("Nonce TTL and capacity must be positive")
        self._ttl_ms = ttl_ms
        self._capacity = capacity
        # nonce -> expiry (epoch ms), insertion ordered
        self._nonces: OrderedDict[str, int] = OrderedDict()
        self._lock = Lock()

    def is_replay(self, nonce: str, now: int | None = None) -> bool:
        """Return True if the nonce is still held from an earlier request."""
        current = now_ms() if now is None else now
        with self._lock:
            expiry = self._nonces.get(nonce)
            return expiry is not None and expiry > current

    def register(self, nonce: str, now: int | None = None) -> None:
        """Record a nonce as used."""
        current = now_ms() if now is None else now
        with self._lock:
            self._store(nonce, current)

    def check_and_register(self, nonce: str, now: int | None = None) -> bool:
        """Atomically record the nonce; return False if it was already held."""
        current = now_ms() if now is None else now
        with self._lock:
            expiry = self._nonces.get(nonce)
            if expiry is not None and expiry > current:
                return False
            self._store(nonce, current)
            return True

    def _store(self, nonce: str, current: int) -> None:
        self._nonces.pop(nonce, None)
        self._nonces[nonce] = current + self._ttl_ms
        if len(self._nonces) > self._capacity:
            self._prune(current)

    def _prune(self, current: int) -> None:
        expired = [nonce for nonce, expiry in self._nonces.items() if expiry <= current]
        for nonce in expired:
            del self._nonces[nonce]
        evicted = 0
        while len(self._nonces) > self._capacity:
            self._nonces.popitem(last=False)
            evicted += 1
        if evicted:
            logger.warning("Replay store over capacity; evicted %d live nonces", evicted)

    def clear(self) -> None:
        """Forget every nonce."""
        with self._lock:
            self._nonces.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._nonces)

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def ttl_ms(self) -> int:
        return self._ttl_ms


def build_replay_service() -> ReplayProtectionService:
    """Return a replay service configured from settings."""
    return ReplayProtectionService(
        ttl_ms=settings.nonce_expiry_ms,
        capacity=settings.nonce_store_capacity,
    )
