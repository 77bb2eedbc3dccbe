"""Operator API for webhooks, deliveries and events."""

from dataclasses import asdict

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import Response

from sbtcpay_webhooks.common.exceptions import (
    NotFoundError,
    QueueUnavailableError,
    ValidationError,
)
from sbtcpay_webhooks.common.security import require_api_key
from sbtcpay_webhooks.webhooks.schemas import (
    DeliveryResponse,
    EventCreate,
    EventResponse,
    TestSendResponse,
    WebhookCreate,
    WebhookCreatedResponse,
    WebhookResponse,
)

router = APIRouter()


def _get_db():
    from sbtcpay_webhooks.deps import get_db
    return get_db()


def _get_registry():
    from sbtcpay_webhooks.deps import get_registry
    return get_registry()


def _get_delivery_store():
    from sbtcpay_webhooks.deps import get_delivery_store
    return get_delivery_store()


def _get_executor():
    from sbtcpay_webhooks.deps import get_executor
    return get_executor()


def _get_dispatcher():
    from sbtcpay_webhooks.deps import get_dispatcher
    return get_dispatcher()


# ── Webhooks ──

@router.post("/webhooks", response_model=WebhookCreatedResponse, status_code=201)
async def create_webhook(body: WebhookCreate, _=Depends(require_api_key)):
    registry = _get_registry()
    db = _get_db()
    try:
        async with db.get_session() as session:
            webhook = await registry.create(
                session,
                merchant_id=body.merchant_id,
                url=body.url,
                event_types=body.event_types,
            )
            return WebhookCreatedResponse.model_validate(webhook)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.get("/webhooks", response_model=list[WebhookResponse])
async def list_webhooks(
    merchant_id: str = Query(..., min_length=1),
    _=Depends(require_api_key),
):
    registry = _get_registry()
    db = _get_db()
    async with db.get_session() as session:
        webhooks = await registry.find_by_merchant(session, merchant_id)
        return [WebhookResponse.model_validate(wh) for wh in webhooks]


@router.get("/webhooks/{webhook_id}", response_model=WebhookResponse)
async def get_webhook(webhook_id: str, _=Depends(require_api_key)):
    registry = _get_registry()
    db = _get_db()
    async with db.get_session() as session:
        webhook = await registry.find_by_id(session, webhook_id)
        if webhook is None:
            raise HTTPException(status_code=404, detail="Webhook not found")
        return WebhookResponse.model_validate(webhook)


@router.delete("/webhooks/{webhook_id}", status_code=204)
async def delete_webhook(webhook_id: str, _=Depends(require_api_key)):
    registry = _get_registry()
    db = _get_db()
    async with db.get_session() as session:
        deleted = await registry.delete(session, webhook_id)
        if not deleted:
            raise HTTPException(status_code=404, detail="Webhook not found")
    return Response(status_code=204)


@router.get("/webhooks/{webhook_id}/deliveries", response_model=list[DeliveryResponse])
async def list_webhook_deliveries(
    webhook_id: str,
    status: str | None = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _=Depends(require_api_key),
):
    store = _get_delivery_store()
    db = _get_db()
    async with db.get_session() as session:
        deliveries = await store.list_by_webhook(
            session, webhook_id, status=status, limit=limit, offset=offset,
        )
        return [DeliveryResponse.model_validate(d) for d in deliveries]


@router.post("/webhooks/{webhook_id}/test", response_model=TestSendResponse)
async def send_test_event(webhook_id: str, _=Depends(require_api_key)):
    executor = _get_executor()
    try:
        result = await executor.send_test(webhook_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    return TestSendResponse(**asdict(result))


# ── Deliveries ──

@router.post("/deliveries/{delivery_id}/retry", response_model=DeliveryResponse)
async def retry_delivery(delivery_id: str, _=Depends(require_api_key)):
    executor = _get_executor()
    try:
        delivery = await executor.retry(delivery_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except QueueUnavailableError as e:
        raise HTTPException(status_code=503, detail=e.message)
    return DeliveryResponse.model_validate(delivery)


# ── Events ──

@router.post("/events", response_model=EventResponse, status_code=201)
async def fire_event(body: EventCreate, _=Depends(require_api_key)):
    dispatcher = _get_dispatcher()
    try:
        event = await dispatcher.trigger_event(body.type, body.data)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return EventResponse(**event.envelope())


@router.get("/events/{event_id}/deliveries", response_model=list[DeliveryResponse])
async def list_event_deliveries(event_id: str, _=Depends(require_api_key)):
    store = _get_delivery_store()
    db = _get_db()
    async with db.get_session() as session:
        deliveries = await store.list_by_event(session, event_id)
        return [DeliveryResponse.model_validate(d) for d in deliveries]
