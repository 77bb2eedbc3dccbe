"""Delivery record store — per-(webhook, event) attempt state machine.

States move ``pending`` → ``retrying`` → ``success`` | ``failed``. The two
terminal states are only left through :meth:`DeliveryRecordStore.reset_for_retry`,
which refuses ``success`` records.
"""

import logging
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sbtcpay_webhooks.common.config import GatewaySettings
from sbtcpay_webhooks.common.exceptions import NotFoundError, ValidationError
from sbtcpay_webhooks.common.models import utcnow
from sbtcpay_webhooks.deliveries.models import DeliveryModel, DeliveryStatus

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 1024


def compute_backoff(attempts: int, base_seconds: int = 60) -> timedelta:
    """Delay before the next attempt after ``attempts`` failures: base * 2^(attempts-1)."""
    if attempts < 1:
        raise ValueError("attempts must be >= 1")
    return timedelta(seconds=base_seconds * 2 ** (attempts - 1))


def truncate(text: str | None, limit: int) -> str | None:
    if text is None or len(text) <= limit:
        return text
    return text[:limit]


class DeliveryRecordStore:
    """Persists delivery records and applies the retry policy to them."""

    def __init__(self, settings: GatewaySettings):
        self.settings = settings

    # ── Create ──

    async def create(
        self, session: AsyncSession, webhook_id: str, event_id: str,
    ) -> DeliveryModel:
        """Create a pending delivery, or return the one that already exists for the pair."""
        existing = await session.execute(
            select(DeliveryModel).where(
                DeliveryModel.webhook_id == webhook_id,
                DeliveryModel.event_id == event_id,
            )
        )
        delivery = existing.scalar_one_or_none()
        if delivery is not None:
            return delivery

        delivery = DeliveryModel(
            webhook_id=webhook_id,
            event_id=event_id,
            status=DeliveryStatus.PENDING.value,
            attempts=0,
        )
        session.add(delivery)
        await session.flush()
        return delivery

    # ── Queries ──

    async def get(
        self, session: AsyncSession, delivery_id: str,
    ) -> Optional[DeliveryModel]:
        return await session.get(DeliveryModel, delivery_id)

    async def list_by_webhook(
        self,
        session: AsyncSession,
        webhook_id: str,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[DeliveryModel]:
        query = select(DeliveryModel).where(DeliveryModel.webhook_id == webhook_id)
        if status is not None:
            query = query.where(DeliveryModel.status == status)
        query = query.order_by(DeliveryModel.created_at.desc()).offset(offset).limit(limit)
        result = await session.execute(query)
        return list(result.scalars().all())

    async def list_by_event(
        self, session: AsyncSession, event_id: str,
    ) -> list[DeliveryModel]:
        result = await session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.event_id == event_id)
            .order_by(DeliveryModel.created_at.desc())
        )
        return list(result.scalars().all())

    async def find_pending(
        self, session: AsyncSession, limit: int = 100, now: datetime | None = None,
    ) -> list[DeliveryModel]:
        """Non-terminal deliveries that are due, oldest first."""
        now = now or utcnow()
        result = await session.execute(
            select(DeliveryModel)
            .where(
                DeliveryModel.status.in_(
                    [DeliveryStatus.PENDING.value, DeliveryStatus.RETRYING.value]
                ),
                or_(
                    DeliveryModel.next_attempt_at.is_(None),
                    DeliveryModel.next_attempt_at <= now,
                ),
            )
            .order_by(DeliveryModel.created_at.asc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # ── State transitions ──

    async def _require(self, session: AsyncSession, delivery_id: str) -> DeliveryModel:
        delivery = await self.get(session, delivery_id)
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return delivery

    async def record_success(
        self,
        session: AsyncSession,
        delivery_id: str,
        status_code: int | None,
        body: str | None,
        now: datetime | None = None,
    ) -> DeliveryModel:
        delivery = await self._require(session, delivery_id)
        delivery.attempts += 1
        delivery.last_attempt_at = now or utcnow()
        delivery.next_attempt_at = None
        delivery.status = DeliveryStatus.SUCCESS.value
        delivery.response_status = status_code
        delivery.response_body = truncate(body, self.settings.response_body_max_length)
        delivery.error = None
        await session.flush()
        return delivery

    async def record_failure(
        self,
        session: AsyncSession,
        delivery_id: str,
        error: str,
        status_code: int | None = None,
        body: str | None = None,
        now: datetime | None = None,
        retryable: bool = True,
    ) -> DeliveryModel:
        """Count a failed attempt and schedule a retry or give up."""
        now = now or utcnow()
        delivery = await self._require(session, delivery_id)
        delivery.attempts += 1
        delivery.last_attempt_at = now
        delivery.response_status = status_code
        delivery.response_body = truncate(body, self.settings.response_body_max_length)
        delivery.error = truncate(error, MAX_ERROR_LENGTH)

        if retryable and delivery.attempts < self.settings.max_delivery_attempts:
            delivery.status = DeliveryStatus.RETRYING.value
            delivery.next_attempt_at = now + compute_backoff(
                delivery.attempts, self.settings.retry_base_delay_seconds,
            )
        else:
            delivery.status = DeliveryStatus.FAILED.value
            delivery.next_attempt_at = None
        await session.flush()
        return delivery

    async def mark_failed(
        self, session: AsyncSession, delivery_id: str, error: str,
    ) -> DeliveryModel:
        """Terminal failure without an HTTP attempt (missing webhook or event)."""
        delivery = await self._require(session, delivery_id)
        delivery.status = DeliveryStatus.FAILED.value
        delivery.next_attempt_at = None
        delivery.error = truncate(error, MAX_ERROR_LENGTH)
        await session.flush()
        return delivery

    async def reset_for_retry(
        self, session: AsyncSession, delivery_id: str,
    ) -> DeliveryModel:
        delivery = await self._require(session, delivery_id)
        if delivery.status == DeliveryStatus.SUCCESS.value:
            raise ValidationError(f"Delivery {delivery_id} already succeeded")
        delivery.status = DeliveryStatus.PENDING.value
        delivery.attempts = 0
        delivery.last_attempt_at = None
        delivery.next_attempt_at = None
        delivery.response_status = None
        delivery.response_body = None
        delivery.error = None
        await session.flush()
        logger.info("Delivery %s reset for manual retry", delivery_id)
        return delivery
