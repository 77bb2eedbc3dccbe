"""Delivery executor — signed POST to a subscriber and retry bookkeeping."""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import httpx

from sbtcpay_webhooks.common.config import GatewaySettings
from sbtcpay_webhooks.common.database import DatabaseManager
from sbtcpay_webhooks.common.exceptions import NotFoundError, TransientDeliveryError
from sbtcpay_webhooks.common.models import as_utc, generate_uuid, utcnow
from sbtcpay_webhooks.deliveries.classifier import (
    DeliveryOutcome,
    OutcomeClassifier,
    OutcomeKind,
    get_classifier,
)
from sbtcpay_webhooks.deliveries.models import DeliveryModel, DeliveryStatus
from sbtcpay_webhooks.deliveries.service import DeliveryRecordStore
from sbtcpay_webhooks.deliveries.signing import signature_header
from sbtcpay_webhooks.events.service import EventStore
from sbtcpay_webhooks.queue.redis_queue import DeliveryQueue
from sbtcpay_webhooks.webhooks.service import WebhookRegistry

logger = logging.getLogger(__name__)

TEST_EVENT_TYPE = "webhook.test"


def serialize_envelope(envelope: dict[str, Any]) -> bytes:
    """The exact bytes that are signed and sent."""
    return json.dumps(envelope, default=str, separators=(",", ":")).encode("utf-8")


@dataclass
class TestSendResult:
    webhook_id: str
    event_id: str
    success: bool
    status_code: Optional[int]
    response_body: Optional[str]
    error: Optional[str]
    duration_ms: float


class DeliveryExecutor:
    """Executes queued deliveries one at a time.

    Every failure talking to the subscriber is absorbed into the delivery
    record; only storage and queue failures escape :meth:`execute`.
    """

    def __init__(
        self,
        settings: GatewaySettings,
        db: DatabaseManager,
        queue: DeliveryQueue,
        events: EventStore,
        registry: WebhookRegistry,
        deliveries: DeliveryRecordStore,
        classifier: OutcomeClassifier | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.db = db
        self.queue = queue
        self.events = events
        self.registry = registry
        self.deliveries = deliveries
        self.classifier = classifier or get_classifier(settings.success_policy)
        self._http_client = http_client

    def _get_http_client(self) -> httpx.AsyncClient:
        """Lazy-init httpx.AsyncClient."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient()
        return self._http_client

    async def close(self) -> None:
        if self._http_client is not None:
            await self._http_client.aclose()
            self._http_client = None

    # ── HTTP ──

    def _headers(self, body: bytes, secret: str, envelope: dict[str, Any]) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.settings.user_agent,
            "X-Signature": signature_header(body, secret),
            "X-Event-Type": envelope["type"],
            "X-Event-Id": envelope["id"],
        }

    async def _post(self, url: str, body: bytes, headers: dict[str, str]) -> httpx.Response:
        try:
            return await self._get_http_client().post(
                url,
                content=body,
                headers=headers,
                timeout=self.settings.delivery_timeout_seconds,
            )
        except httpx.TimeoutException as exc:
            raise TransientDeliveryError(f"Request timed out: {exc}") from exc
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(f"Request failed: {exc}") from exc

    async def _send(
        self, url: str, secret: str, envelope: dict[str, Any], extra_headers: dict[str, str],
    ) -> DeliveryOutcome:
        body = serialize_envelope(envelope)
        headers = self._headers(body, secret, envelope)
        headers.update(extra_headers)
        try:
            response = await self._post(url, body, headers)
        except TransientDeliveryError as exc:
            return self.classifier.classify(error=exc)
        return self.classifier.classify(response=response)

    # ── Queue processing ──

    async def execute(self, delivery_id: str) -> Optional[DeliveryModel]:
        """Attempt one delivery and record the outcome."""
        now = utcnow()
        async with self.db.get_session() as session:
            delivery = await self.deliveries.get(session, delivery_id)
            if delivery is None:
                logger.warning("Delivery %s not found; dropping", delivery_id)
                return None

            if delivery.is_terminal:
                logger.info(
                    "Delivery %s already %s; skipping", delivery_id, delivery.status,
                )
                return delivery

            due_at = as_utc(delivery.next_attempt_at)
            if due_at is not None and due_at > now:
                await self.queue.enqueue(delivery_id, not_before=due_at)
                logger.debug("Delivery %s not due until %s", delivery_id, due_at.isoformat())
                return delivery

            webhook = await self.registry.find_by_id(session, delivery.webhook_id)
            if webhook is None:
                return await self._fail_missing(session, delivery_id, NotFoundError("Webhook not found"))

            event = await self.events.get(session, delivery.event_id)
            if event is None:
                return await self._fail_missing(session, delivery_id, NotFoundError("Event not found"))

            url, secret, envelope = webhook.url, webhook.secret, event.envelope()

        outcome = await self._send(url, secret, envelope, {"X-Delivery-Id": delivery_id})
        return await self._apply_outcome(delivery_id, outcome)

    async def _fail_missing(self, session, delivery_id: str, exc: NotFoundError) -> DeliveryModel:
        logger.warning("Delivery %s failed permanently: %s", delivery_id, exc.message)
        return await self.deliveries.mark_failed(session, delivery_id, exc.message)

    async def _apply_outcome(self, delivery_id: str, outcome: DeliveryOutcome) -> DeliveryModel:
        now = utcnow()
        async with self.db.get_session() as session:
            if outcome.succeeded:
                delivery = await self.deliveries.record_success(
                    session, delivery_id, outcome.status_code, outcome.body, now=now,
                )
            else:
                delivery = await self.deliveries.record_failure(
                    session,
                    delivery_id,
                    error=outcome.error or "Delivery failed",
                    status_code=outcome.status_code,
                    body=outcome.body,
                    now=now,
                    retryable=outcome.kind is OutcomeKind.TRANSIENT,
                )

        log_extra = {
            "delivery_id": delivery_id,
            "attempts": delivery.attempts,
            "status": delivery.status,
            "response_status": delivery.response_status,
        }
        if delivery.status == DeliveryStatus.RETRYING.value:
            # Record is committed before the id goes back on the queue.
            await self.queue.enqueue(delivery_id, not_before=as_utc(delivery.next_attempt_at))
            logger.info(
                "Delivery %s attempt %d failed (%s); retry at %s",
                delivery_id, delivery.attempts, delivery.error,
                as_utc(delivery.next_attempt_at).isoformat(), extra=log_extra,
            )
        elif delivery.status == DeliveryStatus.FAILED.value:
            logger.warning(
                "Delivery %s failed after %d attempts: %s",
                delivery_id, delivery.attempts, delivery.error, extra=log_extra,
            )
        else:
            logger.info("Delivery %s succeeded", delivery_id, extra=log_extra)
        return delivery

    # ── Operator actions ──

    async def retry(self, delivery_id: str) -> DeliveryModel:
        """Manual retry: reset the record and put it back on the queue."""
        async with self.db.get_session() as session:
            delivery = await self.deliveries.get(session, delivery_id)
            if delivery is None:
                raise NotFoundError(f"Delivery {delivery_id} not found")
            if await self.registry.find_by_id(session, delivery.webhook_id) is None:
                raise NotFoundError("Webhook not found")
            delivery = await self.deliveries.reset_for_retry(session, delivery_id)
        await self.queue.enqueue(delivery_id)
        return delivery

    async def send_test(self, webhook_id: str) -> TestSendResult:
        """Send a synthetic, unpersisted ``webhook.test`` event to one webhook."""
        async with self.db.get_session() as session:
            webhook = await self.registry.find_by_id(session, webhook_id)
            if webhook is None:
                raise NotFoundError("Webhook not found")
            url, secret = webhook.url, webhook.secret

        envelope = {
            "id": generate_uuid(),
            "type": TEST_EVENT_TYPE,
            "created": utcnow().isoformat(),
            "data": {"message": "Test webhook from sBTCPay", "webhookId": webhook_id},
        }
        started = time.perf_counter()
        outcome = await self._send(url, secret, envelope, {})
        duration_ms = (time.perf_counter() - started) * 1000
        logger.info(
            "Test event sent to webhook %s: %s", webhook_id, outcome.kind.value,
        )
        return TestSendResult(
            webhook_id=webhook_id,
            event_id=envelope["id"],
            success=outcome.succeeded,
            status_code=outcome.status_code,
            response_body=outcome.body,
            error=outcome.error,
            duration_ms=round(duration_ms, 2),
        )
