"""HMAC-SHA256 signing of webhook bodies."""

import hashlib
import hmac

SIGNATURE_PREFIX = "sha256="


def sign_payload(body: str | bytes, secret: str) -> str:
    """Compute HMAC-SHA256 hex digest of the exact body bytes."""
    if isinstance(body, str):
        body = body.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def signature_header(body: str | bytes, secret: str) -> str:
    """Value for the ``X-Signature`` header: ``sha256=<hex>``."""
    return f"{SIGNATURE_PREFIX}{sign_payload(body, secret)}"


def verify_signature(body: str | bytes, header: str, secret: str) -> bool:
    """Verify an incoming webhook's ``X-Signature`` header.

    Args:
        body: The raw request body (string or bytes).
        header: The value of the X-Signature header.
        secret: The webhook registration's secret.

    Returns:
        True if the signature is valid, False otherwise.
    """
    if not header or not header.startswith(SIGNATURE_PREFIX):
        return False
    expected = sign_payload(body, secret)
    return hmac.compare_digest(expected, header[len(SIGNATURE_PREFIX):])
