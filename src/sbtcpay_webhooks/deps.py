"""Dependency injection singletons for the webhook gateway."""

from redis.asyncio import Redis

from sbtcpay_webhooks.common.config import get_settings
from sbtcpay_webhooks.common.database import DatabaseManager
from sbtcpay_webhooks.deliveries.dispatcher import EventDispatcher
from sbtcpay_webhooks.deliveries.executor import DeliveryExecutor
from sbtcpay_webhooks.deliveries.service import DeliveryRecordStore
from sbtcpay_webhooks.events.service import EventStore
from sbtcpay_webhooks.queue.redis_queue import DeliveryQueue
from sbtcpay_webhooks.webhooks.service import WebhookRegistry
from sbtcpay_webhooks.worker.loop import WebhookWorker

_db: DatabaseManager | None = None
_redis: Redis | None = None
_queue: DeliveryQueue | None = None
_events: EventStore | None = None
_registry: WebhookRegistry | None = None
_deliveries: DeliveryRecordStore | None = None
_executor: DeliveryExecutor | None = None
_dispatcher: EventDispatcher | None = None
_worker: WebhookWorker | None = None


def get_db() -> DatabaseManager:
    global _db
    if _db is None:
        _db = DatabaseManager(get_settings())
    return _db


def get_redis() -> Redis:
    global _redis
    if _redis is None:
        _redis = Redis.from_url(get_settings().redis_url, decode_responses=True)
    return _redis


def get_queue() -> DeliveryQueue:
    global _queue
    if _queue is None:
        _queue = DeliveryQueue(get_redis(), prefix=get_settings().queue_key_prefix)
    return _queue


def get_event_store() -> EventStore:
    global _events
    if _events is None:
        _events = EventStore()
    return _events


def get_registry() -> WebhookRegistry:
    global _registry
    if _registry is None:
        _registry = WebhookRegistry()
    return _registry


def get_delivery_store() -> DeliveryRecordStore:
    global _deliveries
    if _deliveries is None:
        _deliveries = DeliveryRecordStore(get_settings())
    return _deliveries


def get_executor() -> DeliveryExecutor:
    global _executor
    if _executor is None:
        _executor = DeliveryExecutor(
            get_settings(),
            get_db(),
            get_queue(),
            events=get_event_store(),
            registry=get_registry(),
            deliveries=get_delivery_store(),
        )
    return _executor


def get_dispatcher() -> EventDispatcher:
    global _dispatcher
    if _dispatcher is None:
        _dispatcher = EventDispatcher(
            get_db(),
            get_queue(),
            events=get_event_store(),
            registry=get_registry(),
            deliveries=get_delivery_store(),
        )
    return _dispatcher


def get_worker() -> WebhookWorker:
    global _worker
    if _worker is None:
        _worker = WebhookWorker(
            get_queue(),
            get_executor(),
            poll_interval=get_settings().worker_poll_interval,
        )
    return _worker


def set_redis(client: Redis) -> None:
    """Use an existing Redis client (tests, embedding applications)."""
    global _redis, _queue
    _redis = client
    _queue = None


def reset_singletons() -> None:
    """Reset all singletons (for testing)."""
    global _db, _redis, _queue, _events, _registry, _deliveries, _executor, _dispatcher, _worker
    _db = None
    _redis = None
    _queue = None
    _events = None
    _registry = None
    _deliveries = None
    _executor = None
    _dispatcher = None
    _worker = None
