"""Event fan-out — one delivery per subscribed webhook, queued for the worker."""

import logging
from datetime import datetime
from typing import Any

from sbtcpay_webhooks.common.database import DatabaseManager
from sbtcpay_webhooks.common.exceptions import QueueUnavailableError
from sbtcpay_webhooks.common.models import utcnow
from sbtcpay_webhooks.deliveries.service import DeliveryRecordStore
from sbtcpay_webhooks.events.models import EventModel
from sbtcpay_webhooks.events.service import EventStore
from sbtcpay_webhooks.queue.redis_queue import DeliveryQueue
from sbtcpay_webhooks.webhooks.service import WebhookRegistry

logger = logging.getLogger(__name__)


def _iso(value: Any) -> Any:
    return value.isoformat() if isinstance(value, datetime) else value


class EventDispatcher:
    """Records domain events and fans them out to subscribed webhooks."""

    def __init__(
        self,
        db: DatabaseManager,
        queue: DeliveryQueue,
        events: EventStore,
        registry: WebhookRegistry,
        deliveries: DeliveryRecordStore,
    ):
        self.db = db
        self.queue = queue
        self.events = events
        self.registry = registry
        self.deliveries = deliveries

    async def trigger_event(self, event_type: str, data: Any) -> EventModel:
        """Record the event, create its deliveries, then queue them.

        Deliveries are committed before they are queued. If the queue is down
        they stay ``pending`` until ``requeue-pending`` puts them back.
        """
        async with self.db.get_session() as session:
            event = await self.events.record(session, event_type, data)
            webhooks = await self.registry.find_subscribed(session, event_type)
            delivery_ids = []
            for webhook in webhooks:
                delivery = await self.deliveries.create(session, webhook.id, event.id)
                delivery_ids.append(delivery.id)

        for delivery_id in delivery_ids:
            try:
                await self.queue.enqueue(delivery_id)
            except QueueUnavailableError:
                logger.exception(
                    "Could not queue delivery %s for event %s", delivery_id, event.id,
                )
        logger.info(
            "Event %s (%s) fanned out to %d webhook(s)",
            event.id, event_type, len(delivery_ids),
        )
        return event

    async def requeue_pending(self, limit: int = 100) -> int:
        """Queue due pending/retrying deliveries, e.g. after a queue outage."""
        async with self.db.get_session() as session:
            pending = await self.deliveries.find_pending(session, limit=limit)
            delivery_ids = [d.id for d in pending]
        for delivery_id in delivery_ids:
            await self.queue.enqueue(delivery_id)
        return len(delivery_ids)

    # ── Payment lifecycle ──

    @staticmethod
    def _payment_object(payment: dict[str, Any], **extra: Any) -> dict[str, Any]:
        obj = {
            "id": payment["id"],
            "object": "payment_intent",
            "amount": payment.get("amount"),
            "status": payment.get("status"),
            "merchantId": payment.get("merchantId"),
            "createdAt": _iso(payment.get("createdAt")),
        }
        obj.update({k: _iso(v) for k, v in extra.items()})
        return {"object": obj}

    async def payment_created(self, payment: dict[str, Any]) -> EventModel:
        return await self.trigger_event("payment.created", self._payment_object(payment))

    async def payment_succeeded(self, payment: dict[str, Any]) -> EventModel:
        return await self.trigger_event(
            "payment.succeeded",
            self._payment_object(
                payment,
                stacksTxId=payment.get("stacksTxId"),
                confirmedAt=payment.get("confirmedAt") or utcnow(),
            ),
        )

    async def payment_failed(
        self, payment: dict[str, Any], reason: str | None = None,
    ) -> EventModel:
        return await self.trigger_event(
            "payment.failed",
            self._payment_object(payment, reason=reason or "Payment failed"),
        )
