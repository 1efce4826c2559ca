"""
Webhook Security Module

Signature verification for Paystack webhooks:
- HMAC-SHA512 over the raw request body, keyed with the webhook secret
- Optional scheme prefix ("sha512=") stripped from the received signature
- Constant-time comparison (prevents timing attacks)
"""

import hashlib
import hmac
import logging
import re
from typing import Optional, Union

from fastapi import Request

logger = logging.getLogger(__name__)

PAYSTACK_SIGNATURE_HEADER = "x-paystack-signature"

_SIGNATURE_PREFIX = re.compile(r"^(sha512=|sha256=)", re.IGNORECASE)


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.
    Lengths are checked first; hmac.compare_digest never stops at the first mismatch.
    """
    if not a or not b:
        return False
    if len(a) != len(b):
        return False
    return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))


def compute_hmac_sha512(secret: str, payload: Union[str, bytes]) -> str:
    """Compute HMAC-SHA512 signature of payload as lowercase hex"""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, hashlib.sha512).hexdigest()


def strip_signature_prefix(signature: str) -> str:
    return _SIGNATURE_PREFIX.sub("", signature.strip())


def verify_paystack_signature(
    raw_body: Union[str, bytes], signature: Optional[str], secret: Optional[str]
) -> bool:
    """
    Verify a Paystack webhook signature.

    Returns False for a missing body, signature or secret. Any error while
    hashing counts as a failed verification rather than propagating.
    """
    try:
        if not raw_body or not signature or not secret:
            return False

        received = strip_signature_prefix(signature)
        expected = compute_hmac_sha512(secret, raw_body)
        return constant_time_compare(expected, received)
    except Exception as e:
        logger.error(f"❌ Webhook signature validation error: {e}")
        return False


def get_client_ip(request: Request) -> str:
    """Source address of the caller, honouring the proxy headers the edge sets"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else "unknown"
