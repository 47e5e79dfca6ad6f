"""Keyed device fingerprints that distinguish clients sharing an address."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Final

from pixelsynth.core.security import keyed_hexdigest
from pixelsynth.services.identity import resolve_client_identity

FINGERPRINT_LENGTH: Final[int] = 32

FINGERPRINT_HEADERS: Final[tuple[str, ...]] = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "accept",
    "dnt",
    "upgrade-insecure-requests",
    "sec-fetch-site",
    "sec-fetch-mode",
    "sec-fetch-dest",
)


def create_device_fingerprint(
    headers: Mapping[str, str],
    secret: str,
    identity: str | None = None,
) -> str:
    """Return a fixed-length HMAC-SHA256 fingerprint for the request.

    Args:
        headers: Request headers keyed by lower-case name.
        secret: Server-held key; rotating it invalidates every fingerprint.
        identity: Pre-resolved client identity. Resolved from `headers` if omitted.

    Returns:
        The first 32 hex characters of the keyed digest.
    """
    if identity is None:
        identity = resolve_client_identity(headers)
    factors = [headers.get(name, "") for name in FINGERPRINT_HEADERS]
    factors.append(identity)
    return keyed_hexdigest(secret, "|".join(factors))[:FINGERPRINT_LENGTH]


def composite_key(identity: str, fingerprint: str) -> str:
    """Join identity and fingerprint into the ledger lookup key."""
    return f"{identity}-{fingerprint}"
