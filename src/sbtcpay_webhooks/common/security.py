"""API key authentication dependency for operator endpoints."""

import hmac

from fastapi import Header, HTTPException


async def require_api_key(
    x_api_key: str = Header(..., alias="X-Api-Key"),
) -> str:
    """FastAPI dependency that validates the operator API key from header."""
    from sbtcpay_webhooks.common.config import get_settings

    settings = get_settings()
    if not hmac.compare_digest(x_api_key, settings.api_key):
        raise HTTPException(status_code=403, detail="Invalid API key")
    return x_api_key
