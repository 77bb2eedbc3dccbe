"""Shared Pydantic schemas for the webhook gateway."""

from pydantic import BaseModel


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    service: str = "sbtcpay-webhooks"


class QueueStatusResponse(BaseModel):
    running: bool = False
    queue_length: int
    processing_count: int
    scheduled_count: int
