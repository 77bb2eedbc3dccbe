"""Webhook registry — subscriber endpoints and their event subscriptions."""

import logging
import secrets
from typing import Optional

from pydantic import AnyHttpUrl, TypeAdapter
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sbtcpay_webhooks.common.exceptions import ValidationError
from sbtcpay_webhooks.webhooks.models import WebhookModel

logger = logging.getLogger(__name__)

_URL_ADAPTER = TypeAdapter(AnyHttpUrl)

SECRET_BYTES = 32  # 256 bits


def generate_secret() -> str:
    return secrets.token_hex(SECRET_BYTES)


def validate_url(url: str) -> str:
    """Return ``url`` unchanged if it is an absolute http(s) URL."""
    if not isinstance(url, str) or not url.strip():
        raise ValidationError("Webhook URL is required")
    try:
        _URL_ADAPTER.validate_python(url)
    except PydanticValidationError as exc:
        raise ValidationError(f"Invalid webhook URL: {url!r}") from exc
    return url


def normalize_event_types(event_types: list[str] | None) -> list[str]:
    if not event_types:
        raise ValidationError("At least one event type is required")
    normalized: list[str] = []
    for et in event_types:
        if not isinstance(et, str) or not et.strip():
            raise ValidationError(f"Invalid event type: {et!r}")
        et = et.strip()
        if et not in normalized:
            normalized.append(et)
    return normalized


class WebhookRegistry:
    """Webhook registration CRUD. Secrets are generated here and never rotated."""

    async def create(
        self,
        session: AsyncSession,
        merchant_id: str,
        url: str,
        event_types: list[str],
    ) -> WebhookModel:
        if not merchant_id:
            raise ValidationError("Merchant ID is required")
        webhook = WebhookModel(
            merchant_id=merchant_id,
            url=validate_url(url),
            event_types=normalize_event_types(event_types),
            secret=generate_secret(),
        )
        session.add(webhook)
        await session.flush()
        logger.info(
            "Webhook %s registered for merchant %s", webhook.id, merchant_id,
        )
        return webhook

    async def find_by_id(
        self, session: AsyncSession, webhook_id: str,
    ) -> Optional[WebhookModel]:
        return await session.get(WebhookModel, webhook_id)

    async def find_by_merchant(
        self, session: AsyncSession, merchant_id: str,
    ) -> list[WebhookModel]:
        result = await session.execute(
            select(WebhookModel)
            .where(WebhookModel.merchant_id == merchant_id)
            .order_by(WebhookModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_subscribed(
        self, session: AsyncSession, event_type: str,
    ) -> list[WebhookModel]:
        """All registrations whose subscribed types include ``event_type``."""
        result = await session.execute(
            select(WebhookModel).order_by(WebhookModel.created_at.asc())
        )
        return [wh for wh in result.scalars().all() if wh.subscribes_to(event_type)]

    async def delete(self, session: AsyncSession, webhook_id: str) -> bool:
        """Hard delete. Delivery records for the webhook are kept as history."""
        webhook = await self.find_by_id(session, webhook_id)
        if webhook is None:
            return False
        await session.delete(webhook)
        await session.flush()
        logger.info("Webhook %s deleted", webhook_id)
        return True
