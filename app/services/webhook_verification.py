"""
Tiendanube webhook signature verification.

The platform signs the raw request body with the app secret:
    x-linkedstore-hmac-sha256: hex(HMAC-SHA256(app_secret, raw_body))
Always verify against the bytes from `await request.body()`; a re-serialized
JSON body does not match byte-for-byte.
"""
import hashlib
import hmac
import logging
import string
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

SIGNATURE_HEADERS = ("x-linkedstore-hmac-sha256", "x-tiendanube-hmac-sha256")
_HEX_DIGITS = set(string.hexdigits)
_SHA256_HEX_LEN = 64


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def get_signature_header(headers: Mapping[str, str]) -> Optional[str]:
    """Return the first signature header present (header lookup is case-insensitive on Starlette headers)."""
    for name in SIGNATURE_HEADERS:
        value = headers.get(name)
        if value:
            return value
    return None


def verify_webhook_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """
    Fails closed: missing secret, missing/malformed signature or mismatch -> False.
    """
    if not secret:
        logger.error("Webhook secret not configured; rejecting delivery")
        return False
    if not signature:
        return False
    candidate = signature.strip().lower()
    if len(candidate) != _SHA256_HEX_LEN or not set(candidate) <= _HEX_DIGITS:
        return False
    expected = compute_signature(raw_body or b"", secret)
    return hmac.compare_digest(expected, candidate)
