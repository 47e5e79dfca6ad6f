"""Keyed hashing and request-signature utilities built on HMAC-SHA256."""
from __future__ import annotations

import binascii
import hashlib
import hmac
import secrets


def keyed_hexdigest(secret: str, message: str) -> str:
    """Return the hex HMAC-SHA256 of `message` under `secret`."""
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def hash_key(value: str, length: int = 16) -> str:
    """Return a truncated SHA-256 hex digest of the provided value."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def signature_payload(timestamp: int, nonce: str, user_agent: str, origin: str) -> str:
    """Return the canonical string a client signs for an admission request."""
    return f"{timestamp}|{nonce}|{user_agent}|{origin}"


def sign_request(secret: str, timestamp: int, nonce: str, user_agent: str, origin: str) -> str:
    """Compute the hex signature expected in the `x-signature` header."""
    return keyed_hexdigest(secret, signature_payload(timestamp, nonce, user_agent, origin))


def verify_request_signature(
    secret: str,
    signature_hex: str | None,
    *,
    timestamp: int,
    nonce: str,
    user_agent: str,
    origin: str,
) -> bool:
    """Verify a client-supplied request signature.

    Args:
        secret: Server-held signing secret.
        signature_hex: Hex-encoded signature taken from the request, if any.
        timestamp: Client-declared timestamp in epoch milliseconds.
        nonce: Client nonce.
        user_agent: Value of the User-Agent header ("" when absent).
        origin: Value of the Origin header ("" when absent).

    Returns:
        True if the signature matches the canonical payload; False otherwise.
    """
    if not signature_hex:
        return False
    try:
        supplied = binascii.unhexlify(signature_hex)
    except (binascii.Error, ValueError):
        return False
    expected = binascii.unhexlify(sign_request(secret, timestamp, nonce, user_agent, origin))
    return secrets.compare_digest(supplied, expected)
