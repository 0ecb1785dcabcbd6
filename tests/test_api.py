"""
Integration tests for the REST API endpoints.

Runs the real app against the file-backed SQLite database from
``conftest``; ``get_db`` is overridden to use the test session factory
and the rate limiter is switched off.
"""

from __future__ import annotations

import httpx
import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from httpx import ASGITransport, AsyncClient

from todaride.api.app import create_app
from todaride.api.dependencies import get_db, get_directions
from todaride.api.middleware import limiter
from todaride.infrastructure.directions import DirectionsClient
from todaride.realtime.events import RealtimeGateway

RIDE_BODY = {
    "firstName": "Maria",
    "lastName": "Santos",
    "pickupLocation": {"name": "A", "lat": 14.88, "lon": 120.85},
    "dropoffLocation": {"name": "B", "lat": 15.18, "lon": 120.59},
    "distance": 35.4,
    "fare": 708,
    "todaName": "BNBB TODA",
}


class FakeSocket:
    def __init__(self):
        self.sent: list[dict] = []

    async def send_json(self, event):
        self.sent.append(event)


def _osrm_ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(
        200,
        json={
            "code": "Ok",
            "routes": [
                {
                    "distance": 2400.0,
                    "duration": 420.0,
                    "geometry": {"coordinates": [[120.8572, 14.8847], [120.8590, 14.8920]]},
                }
            ],
        },
    )


def _osrm_timeout(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectTimeout("timed out", request=request)


@pytest.fixture
def app(session_factory):
    application = create_app()

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = _get_test_db
    application.state.gateway = RealtimeGateway(application.state.hub, session_factory)
    limiter.enabled = False
    yield application
    limiter.enabled = True


@pytest_asyncio.fixture
async def client(app):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test/api/v1") as ac:
        yield ac


def _as(user_id: str) -> dict:
    return {"X-User-Id": user_id}


async def _book(client, users, who="maria") -> dict:
    response = await client.post("/rides", json=RIDE_BODY, headers=_as(users[who]))
    assert response.status_code == 201, response.text
    return response.json()


# ── Health / auth ─────────────────────────────────────────────────────


class TestHealthAndAuth:
    @pytest.mark.asyncio
    async def test_health(self, client):
        response = await client.get("/admin/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "online_users": 0}

    @pytest.mark.asyncio
    async def test_missing_user_header_is_401(self, client, users):
        response = await client.get("/rides")
        assert response.status_code == 401
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "unauthorized"

    @pytest.mark.asyncio
    async def test_unknown_user_is_401(self, client, users):
        response = await client.get("/rides", headers=_as("ghost"))
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_banned_user_is_403(self, client, users):
        response = await client.get("/rides/available", headers=_as(users["banned"]))
        assert response.status_code == 403
        assert response.json()["message"] == "Your account has been banned."


# ── Rides ─────────────────────────────────────────────────────────────


class TestRideEndpoints:
    @pytest.mark.asyncio
    async def test_book_ride(self, client, users):
        ride = await _book(client, users)
        assert ride["status"] == "pending"
        assert ride["driver"] is None
        assert ride["driver_id"] is None
        assert ride["pickup"] == {"name": "A", "latitude": 14.88, "longitude": 120.85}
        assert ride["passenger"]["display_name"] == "Maria Santos"

    @pytest.mark.asyncio
    async def test_book_without_coordinates_is_400(self, client, users):
        body = {**RIDE_BODY, "pickupLocation": {"name": "A"}}
        response = await client.post("/rides", json=body, headers=_as(users["maria"]))
        assert response.status_code == 400
        assert response.json()["message"] == "Invalid pickup location data"

    @pytest.mark.asyncio
    async def test_book_without_fare_is_400(self, client, users):
        body = {k: v for k, v in RIDE_BODY.items() if k != "fare"}
        response = await client.post("/rides", json=body, headers=_as(users["maria"]))
        assert response.status_code == 400
        assert response.json()["error"] == "validation_error"

    @pytest.mark.asyncio
    async def test_driver_sees_only_own_toda(self, client, users):
        ride = await _book(client, users)
        same = await client.get("/rides/available", headers=_as(users["ramon"]))
        other = await client.get("/rides/available", headers=_as(users["carlo"]))
        assert [r["id"] for r in same.json()["rides"]] == [ride["id"]]
        assert other.json()["total"] == 0

    @pytest.mark.asyncio
    async def test_commuter_cannot_list_available(self, client, users):
        response = await client.get("/rides/available", headers=_as(users["maria"]))
        assert response.status_code == 403
        assert response.json()["error"] == "invalid_role"

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, client, users):
        ride = await _book(client, users)
        first = await client.put(
            f"/rides/{ride['id']}/assign-driver", headers=_as(users["ramon"])
        )
        second = await client.put(
            f"/rides/{ride['id']}/assign-driver", headers=_as(users["nestor"])
        )
        assert first.status_code == 200
        assert first.json()["status"] == "accepted"
        assert first.json()["driver"]["display_name"] == "Ramon Dela Cruz"
        assert first.json()["driver"]["phone"] == "09180000001"
        assert second.status_code == 409
        assert second.json()["message"] == "Ride no longer available"

        after = await client.get(f"/rides/{ride['id']}", headers=_as(users["maria"]))
        assert after.json()["driver_id"] == users["ramon"]

    @pytest.mark.asyncio
    async def test_driver_cannot_assign_someone_else(self, client, users):
        ride = await _book(client, users)
        response = await client.put(
            f"/rides/{ride['id']}/assign-driver",
            json={"driverId": users["nestor"]},
            headers=_as(users["ramon"]),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_status_flow_to_completed(self, client, users):
        ride = await _book(client, users)
        driver = _as(users["ramon"])
        for status in ("accepted", "in-progress", "completed"):
            response = await client.put(
                f"/rides/{ride['id']}/status", json={"status": status}, headers=driver
            )
            assert response.status_code == 200, response.text
            assert response.json()["status"] == status
        done = response.json()
        assert done["started_at"] is not None
        assert done["completed_at"] is not None

        cancel = await client.put(
            f"/rides/{ride['id']}/cancel",
            json={"cancelledBy": "user", "cancelledReason": "late"},
            headers=_as(users["maria"]),
        )
        assert cancel.status_code == 409

    @pytest.mark.asyncio
    async def test_pending_to_completed_is_invalid_transition(self, client, users):
        ride = await _book(client, users)
        response = await client.put(
            f"/rides/{ride['id']}/status",
            json={"status": "completed"},
            headers=_as(users["admin"]),
        )
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"

    @pytest.mark.asyncio
    async def test_cancel_pending_with_default_reason(self, client, users):
        ride = await _book(client, users)
        response = await client.put(f"/rides/{ride['id']}/cancel", headers=_as(users["maria"]))
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "cancelled"
        assert body["cancelled_by"] == "user"
        assert body["cancelled_reason"] == "No reason provided"

        accept = await client.put(
            f"/rides/{ride['id']}/assign-driver", headers=_as(users["ramon"])
        )
        assert accept.status_code == 409

    @pytest.mark.asyncio
    async def test_commuter_cannot_cancel_as_admin(self, client, users):
        ride = await _book(client, users)
        response = await client.put(
            f"/rides/{ride['id']}/cancel",
            json={"cancelledBy": "admin"},
            headers=_as(users["maria"]),
        )
        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_reject(self, client, users):
        ride = await _book(client, users)
        response = await client.put(f"/rides/{ride['id']}/reject", headers=_as(users["ramon"]))
        assert response.status_code == 200
        assert response.json()["cancelled_by"] == "driver"
        assert response.json()["cancelled_reason"] == "Driver declined the ride"

    @pytest.mark.asyncio
    async def test_unknown_ride_is_404(self, client, users):
        response = await client.get("/rides/does-not-exist", headers=_as(users["maria"]))
        assert response.status_code == 404
        assert response.json() == {
            "success": False,
            "error": "not_found",
            "message": "Ride not found",
        }

    @pytest.mark.asyncio
    async def test_user_history(self, client, users):
        await _book(client, users)
        await _book(client, users, "jose")
        mine = await client.get(f"/rides/user/{users['maria']}", headers=_as(users["maria"]))
        assert mine.json()["total"] == 1
        other = await client.get(f"/rides/user/{users['jose']}", headers=_as(users["maria"]))
        assert other.status_code == 403

    @pytest.mark.asyncio
    async def test_list_by_status(self, client, users):
        await _book(client, users)
        ride = await _book(client, users, "jose")
        await client.put(f"/rides/{ride['id']}/assign-driver", headers=_as(users["ramon"]))

        response = await client.get(
            "/rides", params={"status": "accepted"}, headers=_as(users["admin"])
        )
        body = response.json()
        assert body["total"] == 1
        assert body["rides"][0]["id"] == ride["id"]

        bad = await client.get("/rides", params={"status": "flying"}, headers=_as(users["admin"]))
        assert bad.status_code == 400


class TestEstimate:
    @pytest.mark.asyncio
    async def test_estimate_uses_road_route(self, app, client):
        app.dependency_overrides[get_directions] = lambda: DirectionsClient(
            "http://osrm.test/route/v1/driving", 1.0, transport=httpx.MockTransport(_osrm_ok)
        )
        params = {
            "pickup_lat": 14.8847,
            "pickup_lng": 120.8572,
            "dropoff_lat": 14.8920,
            "dropoff_lng": 120.8590,
        }
        regular = await client.get("/rides/estimate", params=params)
        senior = await client.get(
            "/rides/estimate", params={**params, "passenger_type": "senior_pwd"}
        )
        assert regular.status_code == 200
        assert regular.json()["fare"] == 36
        assert regular.json()["fallback"] is False
        assert len(regular.json()["polyline"]) == 2
        assert senior.json()["fare"] == 29

    @pytest.mark.asyncio
    async def test_estimate_falls_back_on_timeout(self, app, client):
        app.dependency_overrides[get_directions] = lambda: DirectionsClient(
            "http://osrm.test/route/v1/driving", 1.0, transport=httpx.MockTransport(_osrm_timeout)
        )
        response = await client.get(
            "/rides/estimate",
            params={"pickup_lat": 14.88, "pickup_lng": 120.85, "dropoff_lat": 15.18, "dropoff_lng": 120.59},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["fallback"] is True
        assert body["polyline"] == [[14.88, 120.85], [15.18, 120.59]]
        assert 40 < body["distance_km"] < 47

    @pytest.mark.asyncio
    async def test_estimate_falls_back_on_malformed_route(self, app, client):
        app.dependency_overrides[get_directions] = lambda: DirectionsClient(
            "http://osrm.test/route/v1/driving",
            1.0,
            transport=httpx.MockTransport(lambda request: httpx.Response(200, json=[])),
        )
        response = await client.get(
            "/rides/estimate",
            params={"pickup_lat": 14.88, "pickup_lng": 120.85, "dropoff_lat": 15.18, "dropoff_lng": 120.59},
        )
        assert response.status_code == 200
        assert response.json()["fallback"] is True


# ── Chats / messages ──────────────────────────────────────────────────


class TestChatEndpoints:
    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, client, users):
        members = {"members": [users["maria"], users["ramon"]]}
        first = await client.post("/chats", json=members, headers=_as(users["maria"]))
        again = await client.post(
            "/chats",
            json={"members": [users["ramon"], users["maria"]]},
            headers=_as(users["ramon"]),
        )
        assert first.status_code == 201
        assert again.status_code == 200
        assert first.json()["id"] == again.json()["id"]
        assert again.json()["created"] is False

    @pytest.mark.asyncio
    async def test_create_requires_two_members_including_caller(self, client, users):
        one = await client.post("/chats", json={"members": [users["maria"]]}, headers=_as(users["maria"]))
        assert one.status_code == 400
        outsider = await client.post(
            "/chats",
            json={"members": [users["ramon"], users["nestor"]]},
            headers=_as(users["maria"]),
        )
        assert outsider.status_code == 403

    @pytest.mark.asyncio
    async def test_message_flow_with_realtime_push(self, app, client, users):
        chat = (
            await client.post(
                "/chats",
                json={"members": [users["maria"], users["ramon"]]},
                headers=_as(users["maria"]),
            )
        ).json()

        hub = app.state.hub
        ramon_socket, maria_socket = FakeSocket(), FakeSocket()
        hub.connect(ramon_socket)
        hub.connect(maria_socket)
        await hub.announce_presence(ramon_socket, users["ramon"])
        await hub.announce_presence(maria_socket, users["maria"])
        hub.join_room(maria_socket, chat["id"])

        sent = await client.post(
            "/messages",
            json={"chatId": chat["id"], "text": "Nasa kanto na po ako"},
            headers=_as(users["ramon"]),
        )
        assert sent.status_code == 201
        message = sent.json()

        pushes = [e for e in maria_socket.sent if e["event"] == "receive-message"]
        assert pushes[0]["message"]["id"] == message["id"]
        assert pushes[0]["chat"]["last_message"]["id"] == message["id"]

        history = await client.get(f"/messages/{chat['id']}", headers=_as(users["maria"]))
        body = history.json()
        assert body["pagination"]["total"] == 1
        assert body["pagination"]["has_next_page"] is False
        assert body["messages"][0]["text"] == "Nasa kanto na po ako"

        listed = await client.get("/chats", headers=_as(users["maria"]))
        assert listed.json()[0]["unread_message_count"] == 1

        read = await client.put(f"/messages/{chat['id']}/read", headers=_as(users["maria"]))
        assert read.json() == {"modified_count": 1}
        again = await client.put(f"/messages/{chat['id']}/read", headers=_as(users["maria"]))
        assert again.json() == {"modified_count": 0}

        fetched = await client.get(f"/chats/{chat['id']}", headers=_as(users["maria"]))
        assert fetched.json()["unread_message_count"] == 0

        hub.join_room(ramon_socket, chat["id"])
        await client.put(f"/messages/{chat['id']}/read", headers=_as(users["maria"]))
        read_events = [e for e in ramon_socket.sent if e["event"] == "messages-read"]
        assert read_events == [
            {"event": "messages-read", "chatId": chat["id"], "readerId": users["maria"]}
        ]

    @pytest.mark.asyncio
    async def test_outsider_cannot_read_history(self, client, users):
        chat = (
            await client.post(
                "/chats",
                json={"members": [users["maria"], users["ramon"]]},
                headers=_as(users["maria"]),
            )
        ).json()
        response = await client.get(f"/messages/{chat['id']}", headers=_as(users["jose"]))
        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_outsider_cannot_send(self, client, users):
        chat = (
            await client.post(
                "/chats",
                json={"members": [users["maria"], users["ramon"]]},
                headers=_as(users["maria"]),
            )
        ).json()
        response = await client.post(
            "/messages", json={"chatId": chat["id"], "text": "hi"}, headers=_as(users["jose"])
        )
        assert response.status_code == 400


# ── Websocket ─────────────────────────────────────────────────────────


def test_websocket_presence_and_ping():
    app = create_app()
    with TestClient(app).websocket_connect("/ws") as ws:
        ws.send_json({"event": "user-online", "userId": "u-1"})
        assert ws.receive_json() == {"event": "users-online", "users": ["u-1"]}

        ws.send_json({"event": "ping"})
        assert ws.receive_json()["event"] == "pong"

        ws.send_text("not json")
        error = ws.receive_json()
        assert error["event"] == "error"
        assert error["code"] == "validation_error"
