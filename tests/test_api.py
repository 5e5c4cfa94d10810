from __future__ import annotations

import json

import httpx
import pytest

from dineflow.main import app


@pytest.fixture()
async def client(database, seed):
    app.state.database = database
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.state.database = None


def _as(user) -> dict:
    return {"X-User-Id": user.id}


def _order_body(seed) -> dict:
    return {
        "restaurant_id": seed.restaurant.id,
        "order_type": "DELIVERY",
        "delivery_address": {"street": "350 Fifth Avenue", "city": "New York", "zip": "10118"},
        "items": [
            {"menu_item_id": seed.pizza.id, "quantity": 2},
            {"menu_item_id": seed.salad.id, "quantity": 1},
        ],
    }


async def test_root(client) -> None:
    response = await client.get("/")

    assert response.status_code == 200
    assert response.json()["documentation"] == "/docs"


async def test_missing_identity_is_unauthorized(client) -> None:
    response = await client.get("/api/orders")

    assert response.status_code == 401
    assert response.json() == {"success": False, "error": "Missing X-User-Id header"}


async def test_place_order_and_receive_notification(client, seed) -> None:
    response = await client.post("/api/orders", json=_order_body(seed), headers=_as(seed.customer))

    assert response.status_code == 201
    order = response.json()
    assert order["total"] == 32.5
    assert order["delivery"]["status"] == "PENDING"
    assert len(order["items"]) == 2

    # Development mode dispatches the outbox once the response is sent
    inbox = await client.get("/api/notifications", headers=_as(seed.customer))
    assert inbox.status_code == 200
    assert [n["title"] for n in inbox.json()["notifications"]] == ["Order Status Update"]


async def test_delivery_order_requires_address(client, seed) -> None:
    body = _order_body(seed)
    del body["delivery_address"]

    response = await client.post("/api/orders", json=body, headers=_as(seed.customer))

    assert response.status_code == 422


async def test_order_visibility(client, seed) -> None:
    created = (await client.post("/api/orders", json=_order_body(seed), headers=_as(seed.customer))).json()

    assert (await client.get(f"/api/orders/{created['id']}", headers=_as(seed.customer))).status_code == 200
    assert (await client.get(f"/api/orders/{created['id']}", headers=_as(seed.other_customer))).status_code == 403

    staff_view = (await client.get("/api/orders", headers=_as(seed.staff))).json()
    assert staff_view["total"] == 1
    outsider_view = (await client.get("/api/orders", headers=_as(seed.outsider))).json()
    assert outsider_view["total"] == 0


async def test_cancelled_order_update_conflicts(client, seed) -> None:
    created = (await client.post("/api/orders", json=_order_body(seed), headers=_as(seed.customer))).json()
    url = f"/api/orders/{created['id']}"

    assert (await client.patch(url, json={"status": "CANCELLED"}, headers=_as(seed.owner))).status_code == 200
    response = await client.patch(url, json={"status": "PREPARING"}, headers=_as(seed.owner))

    assert response.status_code == 409
    assert response.json()["success"] is False

    audit = (await client.get(f"{url}/audit", headers=_as(seed.owner))).json()
    assert [entry["operation"] for entry in audit] == ["CREATE", "UPDATE"]


async def test_webhook_marks_payment_paid_once(client, seed) -> None:
    created = (await client.post("/api/orders", json=_order_body(seed), headers=_as(seed.customer))).json()
    intent = await client.post("/api/payments/intent", json={"order_id": created["id"]}, headers=_as(seed.customer))
    assert intent.status_code == 201
    transaction_id = intent.json()["payment"]["transaction_id"]

    event = json.dumps({
        "id": "evt_api_1",
        "type": "payment_intent.succeeded",
        "data": {"object": {"id": transaction_id}},
    })
    first = await client.post("/api/payments/webhook", content=event, headers={"Stripe-Signature": "t=1,v1=mock"})
    second = await client.post("/api/payments/webhook", content=event, headers={"Stripe-Signature": "t=1,v1=mock"})

    assert first.json() == {"received": True, "duplicate": False, "handled": True}
    assert second.json()["duplicate"] is True

    order = (await client.get(f"/api/orders/{created['id']}", headers=_as(seed.customer))).json()
    assert order["status"] == "PREPARING"
    assert order["payment_status"] == "PAID"


async def test_invalid_webhook_payload(client) -> None:
    response = await client.post("/api/payments/webhook", content=b"not json")

    assert response.status_code == 400


async def test_customers_cannot_create_restaurants(client, seed) -> None:
    response = await client.post("/api/restaurants", json={"name": "Home Kitchen"}, headers=_as(seed.customer))

    assert response.status_code == 403


async def test_cart_merge_over_http(client, seed) -> None:
    body = {"menu_item_id": seed.pizza.id, "quantity": 4}
    await client.post("/api/cart/items", json=body, headers=_as(seed.customer))
    response = await client.post("/api/cart/items", json=body, headers=_as(seed.customer))

    assert response.status_code == 200
    assert response.json()["items"][0]["quantity"] == 8

    response = await client.post("/api/cart/items", json=body, headers=_as(seed.customer))
    assert response.status_code == 400
