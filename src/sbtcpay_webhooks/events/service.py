"""Event store — append-only record of payment lifecycle events."""

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sbtcpay_webhooks.common.exceptions import ValidationError
from sbtcpay_webhooks.common.models import as_utc, utcnow
from sbtcpay_webhooks.events.models import EventModel


def serialize_payload(data: Any) -> str:
    return json.dumps(data, default=str, separators=(",", ":"))


def to_utc(value: datetime) -> datetime:
    """Convert to UTC; naive values are taken to be UTC already."""
    return as_utc(value).astimezone(timezone.utc)


def is_valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(str(value))
    except ValueError:
        return False
    return True


class EventStore:
    """Durable event log. Events are never updated or deleted."""

    # ── Write ──

    async def record(
        self,
        session: AsyncSession,
        event_type: str,
        data: Any,
        created_at: datetime | None = None,
    ) -> EventModel:
        if not event_type or not event_type.strip():
            raise ValidationError("Event type is required")
        event = EventModel(
            type=event_type,
            payload=serialize_payload(data),
            created_at=to_utc(created_at) if created_at else utcnow(),
        )
        session.add(event)
        await session.flush()
        return event

    # ── Read ──

    async def get(self, session: AsyncSession, event_id: str) -> Optional[EventModel]:
        """Return the event, or None for unknown or malformed ids."""
        if not is_valid_uuid(event_id):
            return None
        return await session.get(EventModel, str(uuid.UUID(str(event_id))))

    async def list_by_type(
        self, session: AsyncSession, event_type: str, limit: int = 100,
    ) -> list[EventModel]:
        result = await session.execute(
            select(EventModel)
            .where(EventModel.type == event_type)
            .order_by(EventModel.created_at.desc(), EventModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_by_time_range(
        self, session: AsyncSession, start: datetime, end: datetime,
    ) -> list[EventModel]:
        """Events with ``start <= created_at <= end``, newest first."""
        start, end = to_utc(start), to_utc(end)
        result = await session.execute(
            select(EventModel)
            .where(EventModel.created_at >= start, EventModel.created_at <= end)
            .order_by(EventModel.created_at.desc(), EventModel.id.desc())
        )
        return list(result.scalars().all())
