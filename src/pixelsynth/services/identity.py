"""Best-effort client identity derived from connection headers.

Addresses are taken in trust order (CDN header, reverse-proxy header, the
forwarded-for chain) and must be public, globally routable addresses. When no
address header is usable, the identity falls back to a hash of browser headers.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Mapping
from typing import Final

from pixelsynth.core.security import hash_key

MAX_FORWARDED_HOPS: Final[int] = 5
SUSPICIOUS_PREFIX: Final[str] = "suspicious-"
FALLBACK_PREFIX: Final[str] = "fallback-"

_FALLBACK_HEADERS: Final[tuple[str, ...]] = (
    "user-agent",
    "accept-language",
    "accept-encoding",
    "connection",
)

_DOTTED_QUAD: Final[re.Pattern[str]] = re.compile(r"[0-9]{1,3}(?:\.[0-9]{1,3}){3}")


def is_valid_ip(candidate: str) -> bool:
    """Return True if `candidate` is a public IPv4 or IPv6 address.

    Private, loopback, link-local, unspecified, broadcast, multicast and
    reserved ranges are all rejected. IPv4 octets may carry leading zeros.
    """
    candidate = candidate.strip()
    if not candidate:
        return False
    if _DOTTED_QUAD.fullmatch(candidate):
        candidate = ".".join(str(int(octet)) for octet in candidate.split("."))
    try:
        address = ipaddress.ip_address(candidate)
    except ValueError:
        return False
    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_unspecified
        or address.is_multicast
        or address.is_reserved
    ):
        return False
    return address.is_global


def _forwarded_identity(forwarded_for: str) -> str | None:
    hops = [hop.strip() for hop in forwarded_for.split(",")]
    first = hops[0]
    if not first or not is_valid_ip(first):
        return None
    if len(hops) > MAX_FORWARDED_HOPS or not all(is_valid_ip(hop) for hop in hops):
        return f"{SUSPICIOUS_PREFIX}{hash_key(forwarded_for)}"
    return first


def fallback_identity(headers: Mapping[str, str]) -> str:
    """Hash browser headers into an opaque identifier."""
    material = "|".join(headers.get(name, "") for name in _FALLBACK_HEADERS)
    return f"{FALLBACK_PREFIX}{hash_key(material)}"


def resolve_client_identity(headers: Mapping[str, str]) -> str:
    """Return a non-empty identity string for the request.

    Args:
        headers: Request headers keyed by lower-case name.

    Returns:
        A trusted client address, a `suspicious-` hash of a forwarding chain
        that failed validation, or a `fallback-` hash of browser headers.
    """
    for name in ("cf-connecting-ip", "x-real-ip"):
        value = headers.get(name, "").strip()
        if value and is_valid_ip(value):
            return value

    forwarded_for = headers.get("x-forwarded-for", "")
    if forwarded_for:
        identity = _forwarded_identity(forwarded_for)
        if identity is not None:
            return identity

    return fallback_identity(headers)
