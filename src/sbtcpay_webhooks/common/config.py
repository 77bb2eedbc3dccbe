"""sBTCPay webhook gateway configuration via pydantic-settings."""

import warnings
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict

_INSECURE_DEFAULTS = {
    "api_key": "insecure-admin-key-change-me",
}

SUCCESS_POLICIES = frozenset({"2xx", "any_response"})


class GatewaySettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SBTCPAY_")

    environment: str = "development"
    api_key: str = "insecure-admin-key-change-me"

    # Durable store
    db_url: str = "sqlite+aiosqlite:///./data/sbtcpay.db"

    # Fast queue store
    redis_url: str = "redis://localhost:6379/0"
    queue_key_prefix: str = "webhook_deliveries"

    # Delivery policy
    delivery_timeout_seconds: float = 10.0
    max_delivery_attempts: int = 5
    retry_base_delay_seconds: int = 60  # 1, 2, 4, 8, 16 minutes
    response_body_max_length: int = 4096
    success_policy: str = "2xx"
    user_agent: str = "sBTCPay-Webhook/1.0"

    # Worker
    worker_poll_interval: float = 1.0  # seconds

    # Logging
    log_level: str = "INFO"
    log_json: bool = True

    # API
    api_title: str = "sBTCPay Webhooks"
    api_version: str = "0.1.0"
    host: str = "0.0.0.0"
    port: int = 8080
    api_prefix: str = ""
    cors_origins: list[str] = ["http://localhost:3000"]

    def validate_for_production(self) -> None:
        """Raise on unusable settings or insecure defaults outside development."""
        if self.success_policy not in SUCCESS_POLICIES:
            raise RuntimeError(
                f"SBTCPAY_SUCCESS_POLICY must be one of {sorted(SUCCESS_POLICIES)}, "
                f"got: {self.success_policy!r}"
            )
        if self.max_delivery_attempts < 1:
            raise RuntimeError("SBTCPAY_MAX_DELIVERY_ATTEMPTS must be at least 1")

        insecure_fields = [
            field
            for field, default in _INSECURE_DEFAULTS.items()
            if getattr(self, field) == default
        ]

        if self.environment != "development" and insecure_fields:
            env_vars = ", ".join(f"SBTCPAY_{f.upper()}" for f in insecure_fields)
            raise RuntimeError(
                f"Insecure default values detected in '{self.environment}' environment. "
                f"Set these environment variables to secure values: {env_vars}. "
                "Generate secrets with: python -c \"import secrets; print(secrets.token_urlsafe(48))\""
            )

        if insecure_fields:
            warnings.warn(
                "Using insecure default keys — set SBTCPAY_API_KEY for production",
                UserWarning,
                stacklevel=2,
            )


@lru_cache
def get_settings() -> GatewaySettings:
    settings = GatewaySettings()
    settings.validate_for_production()
    return settings
