"""
HMAC-SHA256 webhook signatures.

Header format:
    t=<unix timestamp>,v1=<hex HMAC-SHA256 of "<timestamp>.<payload>">

Team secrets issued as ``wh_<key>.<suffix>`` sign with ``<key>`` only;
any other secret is used as-is.
"""

import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

SIGNATURE_VERSION = "v1"
SECRET_PREFIX = "wh_"
DEFAULT_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class SignatureComponents:
    """Parsed pieces of a signature header."""
    timestamp: int
    signature: str


def derive_signing_key(secret: str) -> str:
    """Return the HMAC key for a team secret."""
    if secret.startswith(SECRET_PREFIX) and "." in secret:
        return secret.split(".", 1)[0][len(SECRET_PREFIX):]
    return secret


def _digest(payload: str, key: str, timestamp: int) -> str:
    return hmac.new(
        key.encode("utf-8"),
        f"{timestamp}.{payload}".encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()


def sign(payload: str, secret: str, timestamp: Optional[int] = None) -> str:
    """
    Sign a serialized payload.

    Args:
        payload: The exact body bytes (as text) that will be sent.
        secret: The team's webhook secret.
        timestamp: Unix seconds; defaults to now.

    Returns:
        The ``X-Webhook-Signature`` header value.
    """
    if timestamp is None:
        timestamp = int(time.time())
    signature = _digest(payload, derive_signing_key(secret), timestamp)
    return f"t={timestamp},{SIGNATURE_VERSION}={signature}"


def parse_signature_header(header: str) -> Optional[SignatureComponents]:
    parts: dict[str, str] = {}
    for item in header.split(","):
        key, sep, value = item.strip().partition("=")
        if not sep:
            return None
        parts[key] = value
    if "t" not in parts or SIGNATURE_VERSION not in parts:
        return None
    try:
        timestamp = int(parts["t"])
    except ValueError:
        return None
    return SignatureComponents(timestamp=timestamp, signature=parts[SIGNATURE_VERSION])


def verify(
    payload: str,
    header: str,
    secret: str,
    tolerance: Optional[int] = DEFAULT_TOLERANCE_SECONDS,
    now: Optional[int] = None,
) -> bool:
    """
    Check a signature header against a payload.

    ``tolerance`` bounds the age of the timestamp in seconds; pass None to
    skip the freshness check.
    """
    components = parse_signature_header(header)
    if components is None:
        logger.debug("Malformed signature header")
        return False
    if tolerance is not None:
        current = int(time.time()) if now is None else now
        if abs(current - components.timestamp) > tolerance:
            logger.debug("Signature timestamp outside tolerance")
            return False
    expected = _digest(payload, derive_signing_key(secret), components.timestamp)
    return hmac.compare_digest(components.signature, expected)
