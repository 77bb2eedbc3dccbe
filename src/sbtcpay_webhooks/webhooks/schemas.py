"""Pydantic schemas for the operator webhook API."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class WebhookCreate(BaseModel):
    merchant_id: str = Field(..., min_length=1, max_length=36)
    url: str
    event_types: list[str] = Field(..., min_length=1)


class WebhookResponse(BaseModel):
    id: str
    merchant_id: str
    url: str
    event_types: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class WebhookCreatedResponse(WebhookResponse):
    """Returned once at creation; the only response that carries the secret."""

    secret: str


class DeliveryResponse(BaseModel):
    id: str
    webhook_id: str
    event_id: str
    status: str
    attempts: int
    last_attempt_at: Optional[datetime] = None
    next_attempt_at: Optional[datetime] = None
    response_status: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class TestSendResponse(BaseModel):
    webhook_id: str
    event_id: str
    success: bool
    status_code: Optional[int] = None
    response_body: Optional[str] = None
    error: Optional[str] = None
    duration_ms: float


class EventCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=100)
    data: Any = None


class EventResponse(BaseModel):
    id: str
    type: str
    created: str
    data: Any = None
