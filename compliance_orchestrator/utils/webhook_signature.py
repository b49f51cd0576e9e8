"""
HMAC-SHA256 verification for inbound webhook bodies.
"""
import hashlib
import hmac
import re
from typing import Optional

SIGNATURE_HEADER = "x-goog-signature"
SIGNATURE_PREFIX = "sha256="

_HEX_DIGEST = re.compile(r"^[0-9a-f]{64}$")


def compute_signature(secret: str, payload: bytes) -> str:
    """Hex HMAC-SHA256 of ``payload``, formatted as the header value."""
    digest = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(secret: Optional[str], payload: bytes, signature_header: Optional[str]) -> bool:
    """
    Check ``signature_header`` against the raw request body.

    A missing secret, a missing header, a header without the ``sha256=``
    prefix or a digest that is not 64 hex characters all fail verification.
    The digest comparison is constant-time.
    """
    if not secret or not signature_header:
        return False
    if not signature_header.startswith(SIGNATURE_PREFIX):
        return False

    expected = signature_header[len(SIGNATURE_PREFIX):].strip().lower()
    if not _HEX_DIGEST.match(expected):
        return False

    computed = hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()
    return hmac.compare_digest(computed.encode("ascii"), expected.encode("ascii"))
