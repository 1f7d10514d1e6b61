"""
Integration tests for the REST API endpoints.

Runs the real application against the per-test SQLite database: the
services built by ``create_app`` get the test session factory and
``get_db`` is overridden to use it as well.
"""

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from carryon.api.app import create_app
from carryon.api.dependencies import get_db
from carryon.api.middleware import limiter
from carryon.infrastructure.payments import HmacSignatureVerifier
from tests.conftest import DROP, PICKUP, RecordingNotifier

PAYMENT_SECRET = "test-payment-key"


def _order_body(**overrides):
    body = {
        "pickup": {"lat": PICKUP[0], "lng": PICKUP[1], "address": "MG Road, Bengaluru"},
        "drop": {"lat": DROP[0], "lng": DROP[1], "address": "Indiranagar, Bengaluru"},
        "vehicle_type": "BIKE",
        "distance_m": 4200,
        "duration_s": 900,
        "payment_method": "CASH",
    }
    body.update(overrides)
    return body


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def app(sessions, world):
    async def _test_db():
        async with sessions() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application = create_app(
        sessions,
        notifier=RecordingNotifier(),
        verifier=HmacSignatureVerifier(PAYMENT_SECRET),
    )
    application.dependency_overrides[get_db] = _test_db
    limiter.reset()
    yield application
    await application.state.notifications.drain()


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def auth(app):
    def _headers(identity):
        return {"Authorization": f"Bearer {app.state.tokens.issue(identity)}"}

    return _headers


async def _create(client, auth, world, **overrides):
    resp = await client.post("/api/v1/orders", json=_order_body(**overrides), headers=auth(world.customer))
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Tests ─────────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "connections": 0}


@pytest.mark.asyncio
async def test_estimate_lists_every_tier(client: AsyncClient):
    resp = await client.post("/api/v1/orders/estimate", json={"distance_m": 4200, "duration_s": 900})
    assert resp.status_code == 200
    estimates = {e["vehicle_type"]: e for e in resp.json()["estimates"]}
    assert set(estimates) == {"BIKE", "CAR", "VAN", "TRUCK"}
    assert estimates["BIKE"]["total"] == 79
    assert estimates["BIKE"]["capacity_kg"] == 20


@pytest.mark.asyncio
async def test_create_order_returns_201(client, auth, world):
    data = await _create(client, auth, world, promo_code="WELCOME50")
    assert data["status"] == "pending"
    assert data["driver_id"] is None
    assert (data["discount"], data["total_fare"]) == (40, 39)
    assert [h["status"] for h in data["history"]] == ["pending"]


@pytest.mark.asyncio
async def test_create_requires_credentials(client):
    resp = await client.post("/api/v1/orders", json=_order_body())
    assert resp.status_code == 401


@pytest.mark.asyncio
async def test_driver_cannot_create(client, auth, world):
    resp = await client.post("/api/v1/orders", json=_order_body(), headers=auth(world.bikers[0]))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_invalid_body_is_400(client, auth, world):
    body = _order_body(pickup={"lat": 123, "lng": 77.6, "address": "Nowhere"})
    resp = await client.post("/api/v1/orders", json=body, headers=auth(world.customer))
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_expired_promo_is_400(client, auth, world):
    resp = await client.post(
        "/api/v1/orders", json=_order_body(promo_code="EXPIRED"), headers=auth(world.customer)
    )
    assert resp.status_code == 400
    assert resp.json()["detail"]["code"] == "validation_error"


@pytest.mark.asyncio
async def test_idempotency_key(client, auth, world):
    first = await _create(client, auth, world, idempotency_key="unique-key-123")
    second = await _create(client, auth, world, idempotency_key="unique-key-123")
    assert first["id"] == second["id"]


@pytest.mark.asyncio
async def test_get_order_visibility(client, auth, world):
    order = await _create(client, auth, world)
    resp = await client.get(f"/api/v1/orders/{order['id']}", headers=auth(world.customer))
    assert resp.status_code == 200
    resp = await client.get(f"/api/v1/orders/{order['id']}", headers=auth(world.other_customer))
    assert resp.status_code == 403
    resp = await client.get("/api/v1/orders/9999", headers=auth(world.customer))
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_orders(client, auth, world):
    await _create(client, auth, world)
    await _create(client, auth, world)
    resp = await client.get("/api/v1/orders?limit=1", headers=auth(world.customer))
    assert resp.status_code == 200
    data = resp.json()
    assert (data["total"], len(data["orders"])) == (2, 1)


@pytest.mark.asyncio
async def test_accept_race_loser_gets_409(client, auth, world):
    order = await _create(client, auth, world)
    won = await client.post(
        f"/api/v1/drivers/orders/{order['id']}/accept", headers=auth(world.bikers[0])
    )
    lost = await client.post(
        f"/api/v1/drivers/orders/{order['id']}/accept", headers=auth(world.bikers[1])
    )
    assert won.status_code == 200
    assert won.json()["driver_id"] == world.bikers[0].id
    assert lost.status_code == 409
    assert lost.json()["detail"]["code"] == "already_taken"


@pytest.mark.asyncio
async def test_busy_driver_gets_409(client, auth, world):
    first = await _create(client, auth, world)
    second = await _create(client, auth, world)
    driver = auth(world.bikers[0])
    await client.post(f"/api/v1/drivers/orders/{first['id']}/accept", headers=driver)
    resp = await client.post(f"/api/v1/drivers/orders/{second['id']}/accept", headers=driver)
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "driver_busy"


@pytest.mark.asyncio
async def test_customer_cannot_accept(client, auth, world):
    order = await _create(client, auth, world)
    resp = await client.post(
        f"/api/v1/drivers/orders/{order['id']}/accept", headers=auth(world.customer)
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_full_delivery_and_rating(client, auth, world):
    order = await _create(client, auth, world)
    driver = auth(world.bikers[0])
    await client.post(f"/api/v1/drivers/orders/{order['id']}/accept", headers=driver)
    for status in ("driver_arrived", "pickup_complete", "in_transit", "delivered"):
        resp = await client.post(
            f"/api/v1/drivers/orders/{order['id']}/status", json={"status": status}, headers=driver
        )
        assert resp.status_code == 200, resp.text
    assert resp.json()["delivered_at"] is not None

    resp = await client.post(
        f"/api/v1/orders/{order['id']}/rate", json={"rating": 5}, headers=auth(world.customer)
    )
    assert resp.status_code == 200
    assert resp.json()["driver_id"] == world.bikers[0].id


@pytest.mark.asyncio
async def test_skipped_status_is_409(client, auth, world):
    order = await _create(client, auth, world)
    driver = auth(world.bikers[0])
    await client.post(f"/api/v1/drivers/orders/{order['id']}/accept", headers=driver)
    resp = await client.post(
        f"/api/v1/drivers/orders/{order['id']}/status", json={"status": "delivered"}, headers=driver
    )
    assert resp.status_code == 409
    assert resp.json()["detail"]["code"] == "invalid_transition"


@pytest.mark.asyncio
async def test_cancel_pending_order(client, auth, world):
    order = await _create(client, auth, world)
    resp = await client.post(
        f"/api/v1/orders/{order['id']}/cancel",
        json={"reason": "Changed my mind"},
        headers=auth(world.customer),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "cancelled"
    assert resp.json()["cancellation_reason"] == "Changed my mind"


@pytest.mark.asyncio
async def test_cancel_already_cancelled_order_fails(client, auth, world):
    order = await _create(client, auth, world)
    await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=auth(world.customer))
    resp = await client.post(f"/api/v1/orders/{order['id']}/cancel", headers=auth(world.customer))
    assert resp.status_code == 409


@pytest.mark.asyncio
async def test_available_orders_for_driver(client, auth, world):
    order = await _create(client, auth, world)
    resp = await client.get("/api/v1/drivers/orders/available", headers=auth(world.bikers[0]))
    assert resp.status_code == 200
    [offer] = resp.json()
    assert offer["id"] == order["id"]
    assert offer["distance_to_pickup_km"] is not None


@pytest.mark.asyncio
async def test_driver_presence_endpoints(client, auth, world):
    driver = auth(world.offline_biker)
    resp = await client.post("/api/v1/drivers/online", json={"online": True}, headers=driver)
    assert resp.status_code == 200
    assert resp.json()["is_online"] is True

    resp = await client.post("/api/v1/drivers/location", json={"lat": 12.97, "lng": 77.6}, headers=driver)
    assert resp.status_code == 200
    assert resp.json() == {"ok": True, "active_order_id": None}


@pytest.mark.asyncio
async def test_chat_endpoints(client, auth, world):
    order = await _create(client, auth, world)
    await client.post(f"/api/v1/drivers/orders/{order['id']}/accept", headers=auth(world.bikers[0]))

    url = f"/api/v1/orders/{order['id']}/messages"
    resp = await client.post(url, json={"body": "Ring the bell"}, headers=auth(world.customer))
    assert resp.status_code == 201
    resp = await client.get(url, headers=auth(world.bikers[0]))
    assert [m["body"] for m in resp.json()] == ["Ring the bell"]
    resp = await client.post(f"{url}/read", headers=auth(world.bikers[0]))
    assert resp.json() == {"updated": 1}

    resp = await client.get(url, headers=auth(world.other_customer))
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_promo_endpoints(client):
    resp = await client.post("/api/v1/promos/validate", json={"code": "welcome50", "amount": 1000})
    assert resp.status_code == 200
    assert resp.json()["discount"] == 100

    resp = await client.get("/api/v1/promos/available")
    assert {p["code"] for p in resp.json()} == {"WELCOME50", "LASTONE", "BIGSPEND"}


@pytest.mark.asyncio
async def test_payment_verification(client, auth, world):
    order = await _create(client, auth, world, payment_method="UPI")
    signature = HmacSignatureVerifier(PAYMENT_SECRET).sign("gw_1", "pay_1")
    body = {"order_id": order["id"], "gateway_order_id": "gw_1", "payment_id": "pay_1"}

    resp = await client.post(
        "/api/v1/payments/verify", json={**body, "signature": "forged"}, headers=auth(world.customer)
    )
    assert resp.status_code == 400

    resp = await client.post(
        "/api/v1/payments/verify", json={**body, "signature": signature}, headers=auth(world.customer)
    )
    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "PAID"
