"""SQLAlchemy model for merchant webhook registrations."""

from sqlalchemy import JSON, String
from sqlalchemy.orm import Mapped, mapped_column

from sbtcpay_webhooks.common.models import Base, TimestampMixin, generate_uuid


class WebhookModel(Base, TimestampMixin):
    __tablename__ = "webhooks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=generate_uuid)
    merchant_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    event_types: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    secret: Mapped[str] = mapped_column(String(255), nullable=False)

    def subscribes_to(self, event_type: str) -> bool:
        return event_type in (self.event_types or [])
