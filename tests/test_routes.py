from decimal import Decimal
from types import SimpleNamespace
import uuid

import pytest
from httpx import ASGITransport, AsyncClient

from app import app
from core.get_current_user import get_current_user
from core.get_db import get_db_async


@pytest.fixture
async def client(session_factory, seed):
    acting = SimpleNamespace(user=seed.sales)

    async def override_db():
        async with session_factory() as session:
            yield session

    async def override_user():
        return acting.user

    app.dependency_overrides[get_db_async] = override_db
    app.dependency_overrides[get_current_user] = override_user

    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as http:
        http.acting = acting
        yield http

    app.dependency_overrides.clear()


def booking_payload(seed, **extra):
    payload = {
        "property_id": str(seed.properties[0].id),
        "customer_id": str(seed.customer.id),
        "agreed_price": "2500000000",
    }
    payload.update(extra)
    return payload


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


async def test_booking_flow_over_http(client, seed):
    created = await client.post("/v1/bookings", json=booking_payload(seed))
    assert created.status_code == 201
    body = created.json()
    assert body["status"] == "PENDING"
    assert body["property"]["status"] == "HOLD"
    assert Decimal(body["agreed_price"]) == Decimal("2500000000")

    booking_id = body["id"]
    denied = await client.post(f"/v1/bookings/{booking_id}/approve")
    assert denied.status_code == 403
    assert denied.json()["message"] == "Access denied."

    client.acting.user = seed.manager
    approved = await client.post(f"/v1/bookings/{booking_id}/approve")
    assert approved.status_code == 200
    assert approved.json()["status"] == "APPROVED"

    again = await client.post(f"/v1/bookings/{booking_id}/approve")
    assert again.status_code == 409
    assert again.json()["error"] == "invalid_transition"
    assert again.json()["details"]["current"] == "APPROVED"

    nxt = await client.get(f"/v1/bookings/{booking_id}/next-statuses")
    assert nxt.json()["next"] == ["DEPOSITED", "CANCELLED"]

    deposit = await client.post(
        f"/v1/bookings/{booking_id}/deposits", json={"amount": "100000000"}
    )
    assert deposit.status_code == 201
    assert deposit.json()["type"] == "DEPOSIT"

    summary = await client.get(f"/v1/bookings/{booking_id}/summary")
    assert Decimal(summary.json()["deposits"]) == Decimal("100000000")

    history = await client.get(f"/v1/bookings/{booking_id}/history")
    assert [row["to_status"] for row in history.json()] == ["PENDING", "APPROVED"]


async def test_booking_errors_map_to_status_codes(client, seed):
    missing = await client.get(f"/v1/bookings/{uuid.uuid4()}")
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"

    bad_price = await client.post(
        "/v1/bookings", json=booking_payload(seed, agreed_price="0")
    )
    assert bad_price.status_code == 422

    created = await client.post("/v1/bookings", json=booking_payload(seed))
    booking_id = created.json()["id"]

    client.acting.user = seed.manager
    patched = await client.patch(
        f"/v1/bookings/{booking_id}", json={"status": "COMPLETED"}
    )
    assert patched.status_code == 422

    blank_reason = await client.post(
        f"/v1/bookings/{booking_id}/cancel", json={"reason": "  "}
    )
    assert blank_reason.status_code == 422

    cancelled = await client.post(
        f"/v1/bookings/{booking_id}/status",
        json={"status": "CANCELLED", "reason": "Customer changed their mind"},
    )
    assert cancelled.status_code == 200
    assert cancelled.json()["cancellation_reason"] == "Customer changed their mind"


async def test_chat_flow_over_http(client, seed):
    created = await client.post(
        "/v1/chat/conversations",
        json={"type": "DIRECT", "participant_ids": [str(seed.manager.id)]},
    )
    assert created.status_code == 201
    convo_id = created.json()["id"]

    for text in ("Hello", "Unit A-01 is available"):
        sent = await client.post(
            f"/v1/chat/conversations/{convo_id}/messages", json={"content": text}
        )
        assert sent.status_code == 201

    empty = await client.post(
        f"/v1/chat/conversations/{convo_id}/messages", json={"content": "   "}
    )
    assert empty.status_code == 422

    client.acting.user = seed.manager
    unread = await client.get("/v1/chat/unread-count")
    assert unread.json()["total"] == 2
    assert unread.json()["by_conversation"] == {convo_id: 2}

    page = await client.get(
        f"/v1/chat/conversations/{convo_id}/messages", params={"limit": 1}
    )
    assert page.json()["items"][0]["content"] == "Unit A-01 is available"
    assert page.json()["next_cursor"]

    read = await client.post(f"/v1/chat/conversations/{convo_id}/read")
    assert read.status_code == 200
    assert read.json()["updated"] == 2

    unread = await client.get("/v1/chat/unread-count")
    assert unread.json() == {"total": 0, "by_conversation": {}}

    listed = await client.get("/v1/chat/conversations")
    assert listed.json()[0]["last_message"]["content"] == "Unit A-01 is available"
    assert listed.json()[0]["unread_count"] == 0


async def test_chat_errors_over_http(client, seed):
    created = await client.post(
        "/v1/chat/conversations",
        json={"type": "DIRECT", "participant_ids": [str(seed.manager.id)]},
    )
    convo_id = created.json()["id"]

    bad_cursor = await client.get(
        f"/v1/chat/conversations/{convo_id}/messages", params={"cursor": "garbage"}
    )
    assert bad_cursor.status_code == 400
    assert bad_cursor.json()["error"] == "validation_error"
    assert bad_cursor.json()["details"] == {"field": "cursor"}

    client.acting.user = seed.support
    outsider = await client.post(f"/v1/chat/conversations/{convo_id}/read")
    assert outsider.status_code == 403

    client.acting.user = seed.marketing
    denied = await client.get("/v1/chat/conversations")
    assert denied.status_code == 403


async def test_clients_cannot_stamp_message_time(client, seed):
    created = await client.post(
        "/v1/chat/conversations",
        json={"type": "DIRECT", "participant_ids": [str(seed.manager.id)]},
    )
    convo_id = created.json()["id"]

    backdated = await client.post(
        f"/v1/chat/conversations/{convo_id}/messages",
        json={"content": "first!", "created_at": "2000-01-01T00:00:00"},
    )
    assert backdated.status_code == 422

    client.acting.user = seed.manager
    unread = await client.get("/v1/chat/unread-count")
    assert unread.json()["total"] == 0
