"""
Integration tests for the REST API endpoints.

The app is built with the test session factory and sandbox gateways, so
every route runs its real orchestrator against SQLite.  The poller is
wired but its interval is pushed out to an hour, so nothing settles unless
a test drives it (webhook or direct reconcile).
"""

from __future__ import annotations

import json

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from src.api.app import create_app
from src.api.middleware import limiter
from src.api.routes.webhooks import sign
from src.domain.enums import PaymentProvider
from src.infrastructure.payments.registry import webhook_secret
from tests.conftest import MTN_DECLINED, MTN_OK, ORANGE_OK

RIDE = {
    "driver_id": "drv-1",
    "from_city": "Douala",
    "to_city": "Yaoundé",
    "departure_time": "2026-11-02T07:30:00+01:00",
    "price_per_seat": "5000",
    "total_seats": 3,
}


# ── Fixture ───────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def app(session_factory, gateways, monkeypatch):
    monkeypatch.setattr(limiter, "enabled", False)
    app = create_app(session_factory=session_factory, gateways=gateways)
    app.state.poller.interval_seconds = 3600
    yield app
    await app.state.poller.stop()
    await app.state.http_client.aclose()


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def _ride(client: AsyncClient, **overrides) -> dict:
    resp = await client.post("/api/v1/rides", json={**RIDE, **overrides})
    assert resp.status_code == 201
    return resp.json()


async def _book(client: AsyncClient, ride_id: int, seats: int, rider_id: str = "rdr-a") -> dict:
    resp = await client.post(
        "/api/v1/bookings", json={"ride_id": ride_id, "rider_id": rider_id, "seats": seats}
    )
    assert resp.status_code == 200, resp.text
    return resp.json()


async def _pay(client: AsyncClient, booking_id: int, phone: str = MTN_OK, provider: str = "mtn"):
    return await client.post(
        f"/api/v1/bookings/{booking_id}/payment",
        json={"provider": provider, "phone_number": phone},
    )


async def _webhook(client: AsyncClient, provider: PaymentProvider, payload, secret=None):
    body = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    signature = sign(body, secret or webhook_secret(provider))
    return await client.post(
        f"/api/v1/webhooks/{provider.value}",
        content=body,
        headers={"Content-Type": "application/json", "X-Signature": signature},
    )


# ── Health & rides ────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_health(client: AsyncClient):
    resp = await client.get("/api/v1/admin/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok", "tracked_transactions": 0}


@pytest.mark.asyncio
async def test_create_and_get_ride(client: AsyncClient):
    ride = await _ride(client)
    assert ride["available_seats"] == 3
    assert ride["committed_seats"] == 0

    resp = await client.get(f"/api/v1/rides/{ride['id']}")
    assert resp.status_code == 200
    assert resp.json()["id"] == ride["id"]


@pytest.mark.asyncio
async def test_get_ride_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/rides/9999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "ride_not_found"


# ── Bookings ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_booking_reserves_seats(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 2)

    assert booking["payment_status"] == "awaiting_payment"
    assert booking["seat_count"] == 2
    resp = await client.get(f"/api/v1/rides/{ride['id']}")
    assert resp.json()["available_seats"] == 1


@pytest.mark.asyncio
async def test_resubmitted_booking_is_the_same_booking(client: AsyncClient):
    ride = await _ride(client)
    first = await _book(client, ride["id"], 2)
    second = await _book(client, ride["id"], 2)

    assert first["id"] == second["id"]
    resp = await client.get(f"/api/v1/rides/{ride['id']}")
    assert resp.json()["committed_seats"] == 2


@pytest.mark.asyncio
async def test_capacity_conflict_reports_available_seats(client: AsyncClient):
    ride = await _ride(client)
    await _book(client, ride["id"], 2, rider_id="rdr-a")

    resp = await client.post(
        "/api/v1/bookings", json={"ride_id": ride["id"], "rider_id": "rdr-b", "seats": 2}
    )

    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient_capacity"
    assert resp.json()["available_seats"] == 1


@pytest.mark.asyncio
async def test_invalid_seat_count(client: AsyncClient):
    ride = await _ride(client)
    resp = await client.post(
        "/api/v1/bookings", json={"ride_id": ride["id"], "rider_id": "rdr-a", "seats": 0}
    )
    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_seat_count"


@pytest.mark.asyncio
async def test_driver_cannot_book_own_ride(client: AsyncClient):
    ride = await _ride(client)
    resp = await client.post(
        "/api/v1/bookings", json={"ride_id": ride["id"], "rider_id": "drv-1", "seats": 1}
    )
    assert resp.status_code == 403


@pytest.mark.asyncio
async def test_get_booking_not_found(client: AsyncClient):
    resp = await client.get("/api/v1/bookings/9999")
    assert resp.status_code == 404
    assert resp.json()["code"] == "booking_not_found"


@pytest.mark.asyncio
async def test_cancel_booking(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 2)

    resp = await client.post(f"/api/v1/bookings/{booking['id']}/cancel")
    assert resp.status_code == 200
    assert resp.json()["payment_status"] == "cancelled"

    again = await client.post(f"/api/v1/bookings/{booking['id']}/cancel")
    assert again.status_code == 409


# ── Payments ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_payment_accepted_and_tracked(client: AsyncClient, app):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 2)

    resp = await _pay(client, booking["id"])

    assert resp.status_code == 202
    attempt = resp.json()
    assert attempt["status"] == "pending"
    assert attempt["currency"] == "XAF"
    assert float(attempt["amount"]) == 10000
    assert app.state.poller.is_tracking(attempt["id"])

    status = await client.get(f"/api/v1/bookings/{booking['id']}/payment/status")
    assert status.json()["status"] == "payment_in_progress"
    assert status.json()["transaction"]["id"] == attempt["id"]


@pytest.mark.asyncio
async def test_second_payment_while_in_flight_conflicts(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 1)
    await _pay(client, booking["id"])

    resp = await _pay(client, booking["id"], phone=ORANGE_OK, provider="orange")

    assert resp.status_code == 409
    assert resp.json()["code"] == "transaction_already_in_progress"


@pytest.mark.asyncio
async def test_phone_of_wrong_operator(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 1)

    resp = await _pay(client, booking["id"], phone=ORANGE_OK, provider="mtn")

    assert resp.status_code == 422
    assert resp.json()["code"] == "invalid_phone_number"


@pytest.mark.asyncio
async def test_declined_payment(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 2)

    resp = await _pay(client, booking["id"], phone=MTN_DECLINED)

    assert resp.status_code == 402
    status = await client.get(f"/api/v1/bookings/{booking['id']}/payment/status")
    assert status.json()["status"] == "failed"
    ride_resp = await client.get(f"/api/v1/rides/{ride['id']}")
    assert ride_resp.json()["available_seats"] == 3


@pytest.mark.asyncio
async def test_active_transactions(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 1)
    attempt = (await _pay(client, booking["id"])).json()

    resp = await client.get("/api/v1/admin/active-transactions")

    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()] == [attempt["id"]]


# ── Webhooks ──────────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_webhook_settles_payment(client: AsyncClient, app):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 2)
    attempt = (await _pay(client, booking["id"])).json()

    resp = await _webhook(
        client,
        PaymentProvider.MTN,
        {"reference": attempt["external_ref"], "status": "SUCCESSFUL"},
    )

    assert resp.status_code == 200
    assert resp.json() == {"received": True, "applied": True}
    assert not app.state.poller.is_tracking(attempt["id"])

    status = await client.get(f"/api/v1/bookings/{booking['id']}/payment/status")
    assert status.json()["status"] == "completed"
    assert status.json()["paid_seat_count"] == 2

    duplicate = await _webhook(
        client,
        PaymentProvider.MTN,
        {"reference": attempt["external_ref"], "status": "SUCCESSFUL"},
    )
    assert duplicate.json()["applied"] is False


@pytest.mark.asyncio
async def test_webhook_bad_signature(client: AsyncClient):
    resp = await _webhook(
        client, PaymentProvider.MTN, {"reference": "x", "status": "SUCCESSFUL"}, secret="wrong"
    )
    assert resp.status_code == 401
    assert resp.json()["code"] == "invalid_signature"


@pytest.mark.asyncio
async def test_webhook_unknown_reference_is_acknowledged(client: AsyncClient):
    resp = await _webhook(
        client, PaymentProvider.ORANGE, {"reference": "nope", "status": "FAILED"}
    )
    assert resp.status_code == 200
    assert resp.json()["applied"] is False


@pytest.mark.asyncio
async def test_webhook_malformed_body(client: AsyncClient):
    resp = await _webhook(client, PaymentProvider.MTN, b"not json")
    assert resp.status_code == 400
    assert resp.json()["code"] == "invalid_callback"


# ── Boarding verification ─────────────────────────────────────────────


async def _paid_booking(client: AsyncClient) -> dict:
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 1)
    attempt = (await _pay(client, booking["id"])).json()
    await _webhook(
        client,
        PaymentProvider.MTN,
        {"reference": attempt["external_ref"], "status": "SUCCESSFUL"},
    )
    return booking


async def _verify(client: AsyncClient, booking_id: int, code: str, driver_id: str = "drv-1"):
    return await client.post(
        f"/api/v1/bookings/{booking_id}/verify-code",
        json={"driver_id": driver_id, "code": code},
    )


@pytest.mark.asyncio
async def test_boarding_code_verifies_once(client: AsyncClient):
    booking = await _paid_booking(client)

    issued = await client.post(
        f"/api/v1/bookings/{booking['id']}/verification-code",
        json={"requester_id": "rdr-a"},
    )
    assert issued.status_code == 200
    code = issued.json()["verification_code"]
    assert len(code) == 6

    wrong = await _verify(client, booking["id"], "000000")
    assert wrong.status_code == 200
    assert wrong.json()["verified"] is False

    ok = await _verify(client, booking["id"], code.lower())
    assert ok.json() == {
        "booking_id": booking["id"],
        "verified": True,
        "message": "Booking verified",
    }
    assert (await client.get(f"/api/v1/bookings/{booking['id']}")).json()["code_verified"] is True

    again = await _verify(client, booking["id"], code)
    assert again.json()["verified"] is False

    reissue = await client.post(
        f"/api/v1/bookings/{booking['id']}/verification-code",
        json={"requester_id": "rdr-a"},
    )
    assert reissue.status_code == 409


@pytest.mark.asyncio
async def test_only_the_driver_verifies(client: AsyncClient):
    booking = await _paid_booking(client)

    resp = await _verify(client, booking["id"], "ABCDEF", driver_id="rdr-a")

    assert resp.status_code == 403
    assert resp.json()["code"] == "booking_not_allowed"


@pytest.mark.asyncio
async def test_unpaid_booking_has_no_code(client: AsyncClient):
    ride = await _ride(client)
    booking = await _book(client, ride["id"], 1)

    issue = await client.post(
        f"/api/v1/bookings/{booking['id']}/verification-code",
        json={"requester_id": "rdr-a"},
    )
    verify = await _verify(client, booking["id"], "ABCDEF")

    assert issue.status_code == 409
    assert verify.status_code == 409
    assert verify.json()["code"] == "invalid_booking_state"


@pytest.mark.asyncio
async def test_stranger_cannot_request_code(client: AsyncClient):
    booking = await _paid_booking(client)

    resp = await client.post(
        f"/api/v1/bookings/{booking['id']}/verification-code",
        json={"requester_id": "someone-else"},
    )

    assert resp.status_code == 403
