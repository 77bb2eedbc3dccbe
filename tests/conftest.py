"""Shared test fixtures for the sBTCPay webhook gateway."""

import os

import fakeredis
import httpx
import pytest
from httpx import ASGITransport, AsyncClient

from sbtcpay_webhooks.common.config import GatewaySettings
from sbtcpay_webhooks.common.database import DatabaseManager
from sbtcpay_webhooks.deliveries.dispatcher import EventDispatcher
from sbtcpay_webhooks.deliveries.executor import DeliveryExecutor
from sbtcpay_webhooks.deliveries.service import DeliveryRecordStore
from sbtcpay_webhooks.events.service import EventStore
from sbtcpay_webhooks.queue.redis_queue import DeliveryQueue
from sbtcpay_webhooks.webhooks.service import WebhookRegistry

API_KEY = "test-admin-api-key"


def make_settings(**overrides) -> GatewaySettings:
    defaults = {"api_key": API_KEY, "db_url": "sqlite+aiosqlite://"}
    defaults.update(overrides)
    return GatewaySettings(**defaults)


class RecordingEndpoint:
    """httpx.MockTransport handler that records requests and replays scripted replies."""

    def __init__(self, *replies):
        self.replies = list(replies) or [httpx.Response(200, text="ok")]
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if isinstance(reply, Exception):
            raise reply
        return reply

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def api_key():
    return API_KEY


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
async def db(settings):
    manager = DatabaseManager(settings)
    await manager.init()
    await manager.create_all()
    yield manager
    await manager.close()


@pytest.fixture
async def redis():
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    await client.aclose()


@pytest.fixture
def queue(redis):
    return DeliveryQueue(redis, prefix="test_deliveries")


@pytest.fixture
def event_store():
    return EventStore()


@pytest.fixture
def registry():
    return WebhookRegistry()


@pytest.fixture
def delivery_store(settings):
    return DeliveryRecordStore(settings)


@pytest.fixture
def dispatcher(db, queue, event_store, registry, delivery_store):
    return EventDispatcher(
        db, queue, events=event_store, registry=registry, deliveries=delivery_store,
    )


@pytest.fixture
def endpoint():
    return RecordingEndpoint()


@pytest.fixture
async def executor(settings, db, queue, event_store, registry, delivery_store, endpoint):
    executor = DeliveryExecutor(
        settings,
        db,
        queue,
        events=event_store,
        registry=registry,
        deliveries=delivery_store,
        http_client=endpoint.client(),
    )
    yield executor
    await executor.close()


@pytest.fixture
def app(redis):
    """Create a test app with in-memory DB and fake Redis."""
    os.environ["SBTCPAY_DB_URL"] = "sqlite+aiosqlite://"
    os.environ["SBTCPAY_API_KEY"] = API_KEY
    os.environ["SBTCPAY_LOG_JSON"] = "false"

    # Clear caches and singletons so new env vars take effect
    from sbtcpay_webhooks.common.config import get_settings
    get_settings.cache_clear()

    from sbtcpay_webhooks.deps import reset_singletons, set_redis
    reset_singletons()
    set_redis(redis)

    from sbtcpay_webhooks.app import create_app
    return create_app()


@pytest.fixture
async def client(app):
    # Manually init DB since ASGITransport doesn't run lifespan
    from sbtcpay_webhooks.deps import get_db
    db = get_db()
    await db.init()
    await db.create_all()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await db.close()


@pytest.fixture
def admin_headers():
    return {"X-Api-Key": API_KEY}
