"""sBTCPay webhooks: durable, retrying, signed webhook delivery for payment events."""

from sbtcpay_webhooks.deliveries.signing import sign_payload, signature_header, verify_signature

__all__ = [
    "sign_payload",
    "signature_header",
    "verify_signature",
]
__version__ = "0.1.0"
