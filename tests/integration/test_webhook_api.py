"""Integration tests for the operator webhook API."""

from unittest.mock import AsyncMock, patch

from sbtcpay_webhooks.deliveries.executor import TestSendResult as SendResult
from sbtcpay_webhooks.deps import get_db, get_delivery_store, get_executor

MERCHANT = "merchant-1"


async def _create(client, headers, url="https://example.com/hook", events=("payment.succeeded",)):
    resp = await client.post(
        "/webhooks",
        headers=headers,
        json={"merchant_id": MERCHANT, "url": url, "event_types": list(events)},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestHealth:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"

    async def test_queue_status(self, client, admin_headers):
        await _create(client, admin_headers)
        await client.post(
            "/events", headers=admin_headers,
            json={"type": "payment.succeeded", "data": {"amount": 1}},
        )
        resp = await client.get("/queue/status")
        assert resp.status_code == 200
        assert resp.json()["queue_length"] == 1
        assert resp.json()["processing_count"] == 0


class TestCreateWebhook:
    async def test_create_returns_secret_once(self, client, admin_headers):
        data = await _create(client, admin_headers)
        assert data["url"] == "https://example.com/hook"
        assert data["event_types"] == ["payment.succeeded"]
        assert len(data["secret"]) == 64

        resp = await client.get(f"/webhooks/{data['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert "secret" not in resp.json()

    async def test_create_requires_auth(self, client):
        resp = await client.post(
            "/webhooks",
            json={"merchant_id": MERCHANT, "url": "https://example.com/hook", "event_types": ["x"]},
        )
        assert resp.status_code in (401, 403, 422)

    async def test_wrong_api_key(self, client):
        resp = await client.get(
            "/webhooks", params={"merchant_id": MERCHANT}, headers={"X-Api-Key": "nope"},
        )
        assert resp.status_code == 403

    async def test_rejects_bad_url(self, client, admin_headers):
        resp = await client.post(
            "/webhooks",
            headers=admin_headers,
            json={"merchant_id": MERCHANT, "url": "not-a-url", "event_types": ["payment.created"]},
        )
        assert resp.status_code == 422

    async def test_rejects_empty_events(self, client, admin_headers):
        resp = await client.post(
            "/webhooks",
            headers=admin_headers,
            json={"merchant_id": MERCHANT, "url": "https://example.com/hook", "event_types": []},
        )
        assert resp.status_code == 422

    async def test_client_cannot_supply_secret(self, client, admin_headers):
        resp = await client.post(
            "/webhooks",
            headers=admin_headers,
            json={
                "merchant_id": MERCHANT,
                "url": "https://example.com/hook",
                "event_types": ["payment.created"],
                "secret": "chosen-by-client",
            },
        )
        assert resp.status_code == 201
        assert resp.json()["secret"] != "chosen-by-client"


class TestListAndDelete:
    async def test_list_by_merchant(self, client, admin_headers):
        await _create(client, admin_headers, url="https://a.example.com/h")
        await _create(client, admin_headers, url="https://b.example.com/h")
        resp = await client.get("/webhooks", params={"merchant_id": MERCHANT}, headers=admin_headers)
        assert resp.status_code == 200
        assert len(resp.json()) == 2

    async def test_get_missing(self, client, admin_headers):
        resp = await client.get("/webhooks/fake-id", headers=admin_headers)
        assert resp.status_code == 404

    async def test_delete(self, client, admin_headers):
        data = await _create(client, admin_headers)
        resp = await client.delete(f"/webhooks/{data['id']}", headers=admin_headers)
        assert resp.status_code == 204
        resp = await client.delete(f"/webhooks/{data['id']}", headers=admin_headers)
        assert resp.status_code == 404


class TestEventsAndDeliveries:
    async def test_fire_event_creates_delivery(self, client, admin_headers):
        webhook = await _create(client, admin_headers)
        resp = await client.post(
            "/events", headers=admin_headers,
            json={"type": "payment.succeeded", "data": {"amount": 100}},
        )
        assert resp.status_code == 201
        event = resp.json()
        assert event["type"] == "payment.succeeded"
        assert event["data"] == {"amount": 100}

        resp = await client.get(f"/events/{event['id']}/deliveries", headers=admin_headers)
        assert resp.status_code == 200
        deliveries = resp.json()
        assert len(deliveries) == 1
        assert deliveries[0]["webhook_id"] == webhook["id"]
        assert deliveries[0]["status"] == "pending"

        resp = await client.get(f"/webhooks/{webhook['id']}/deliveries", headers=admin_headers)
        assert [d["id"] for d in resp.json()] == [deliveries[0]["id"]]

    async def test_retry_failed_delivery(self, client, admin_headers):
        await _create(client, admin_headers)
        event = (await client.post(
            "/events", headers=admin_headers, json={"type": "payment.succeeded", "data": {}},
        )).json()
        delivery_id = (await client.get(
            f"/events/{event['id']}/deliveries", headers=admin_headers,
        )).json()[0]["id"]

        db, store = get_db(), get_delivery_store()
        async with db.get_session() as session:
            for _ in range(5):
                await store.record_failure(session, delivery_id, "refused")

        resp = await client.post(f"/deliveries/{delivery_id}/retry", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["status"] == "pending"
        assert resp.json()["attempts"] == 0

    async def test_retry_missing(self, client, admin_headers):
        resp = await client.post("/deliveries/fake-id/retry", headers=admin_headers)
        assert resp.status_code == 404

    async def test_retry_succeeded_conflict(self, client, admin_headers):
        await _create(client, admin_headers)
        event = (await client.post(
            "/events", headers=admin_headers, json={"type": "payment.succeeded", "data": {}},
        )).json()
        delivery_id = (await client.get(
            f"/events/{event['id']}/deliveries", headers=admin_headers,
        )).json()[0]["id"]
        db, store = get_db(), get_delivery_store()
        async with db.get_session() as session:
            await store.record_success(session, delivery_id, 200, "ok")

        resp = await client.post(f"/deliveries/{delivery_id}/retry", headers=admin_headers)
        assert resp.status_code == 409


class TestSendTest:
    async def test_send_test(self, client, admin_headers):
        webhook = await _create(client, admin_headers)
        result = SendResult(
            webhook_id=webhook["id"], event_id="e1", success=True,
            status_code=200, response_body="ok", error=None, duration_ms=3.2,
        )
        executor = get_executor()
        with patch.object(executor, "send_test", new=AsyncMock(return_value=result)) as mock_send:
            resp = await client.post(f"/webhooks/{webhook['id']}/test", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json()["success"] is True
        assert resp.json()["status_code"] == 200
        mock_send.assert_awaited_once_with(webhook["id"])

    async def test_send_test_missing_webhook(self, client, admin_headers):
        resp = await client.post("/webhooks/fake-id/test", headers=admin_headers)
        assert resp.status_code == 404
