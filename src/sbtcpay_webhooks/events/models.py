"""SQLAlchemy model for recorded domain events."""

import json
from datetime import datetime
from typing import Any

from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from sbtcpay_webhooks.common.models import Base, as_utc, generate_uuid, utcnow


class EventModel(Base):
    """Immutable domain event. ``payload`` is the opaque serialized event data."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    type: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    payload: Mapped[str] = mapped_column(Text, nullable=False, default="null")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )

    @property
    def data(self) -> Any:
        return json.loads(self.payload)

    def envelope(self) -> dict[str, Any]:
        """The ``{id, type, created, data}`` object sent to subscribers."""
        return {
            "id": self.id,
            "type": self.type,
            "created": as_utc(self.created_at).isoformat(),
            "data": self.data,
        }
