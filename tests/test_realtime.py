"""
WebSocket tests.

Everything runs inside one ``TestClient`` context so HTTP calls and the
socket share the app's event loop and the in-memory broadcaster.
"""

import pytest
from fastapi.testclient import TestClient

from tests.conftest import ASHA, BILAL, DRIVER, point


@pytest.fixture
def test_client(app):
    with TestClient(app) as client:
        yield client


def _create_ride(client) -> int:
    resp = client.post(
        "/api/v1/rides",
        json={"pickup": point(0, 0), "drop": point(0, 1)},
        headers={"X-User-Id": str(ASHA.id)},
    )
    assert resp.status_code == 201
    return resp.json()["id"]


def test_user_room_receives_join_request(test_client):
    ride_id = _create_ride(test_client)

    with test_client.websocket_connect(f"/api/v1/ws?user_id={ASHA.id}") as ws:
        resp = test_client.post(
            f"/api/v1/rides/{ride_id}/join",
            json={"pickup": point(1, 0, "Gate 4"), "drop": point(1, 1)},
            headers={"X-User-Id": str(BILAL.id)},
        )
        assert resp.status_code == 202

        message = ws.receive_json()
        assert message["event"] == "join_request"
        assert message["room"] == f"user:{ASHA.id}"
        assert message["data"]["requesterId"] == BILAL.id
        assert message["data"]["pickup"]["name"] == "Gate 4"


def test_driver_hears_new_ride_request(test_client):
    with test_client.websocket_connect(f"/api/v1/ws?user_id={DRIVER.id}") as ws:
        ride_id = _create_ride(test_client)

        message = ws.receive_json()
        assert message["event"] == "new_ride_request"
        assert message["room"] == "drivers"
        assert message["data"]["id"] == ride_id
        assert message["data"]["passengers"][0]["name"] == ASHA.name


def test_ride_room_follows_approval(test_client):
    ride_id = _create_ride(test_client)
    test_client.post(
        f"/api/v1/rides/{ride_id}/join",
        json={"pickup": point(1, 0), "drop": point(1, 1)},
        headers={"X-User-Id": str(BILAL.id)},
    )

    with test_client.websocket_connect(f"/api/v1/ws?user_id={ASHA.id}") as ws:
        ws.send_json({"action": "join_ride", "rideId": ride_id})
        assert ws.receive_json() == {
            "event": "subscribed",
            "room": f"ride:{ride_id}",
            "data": {},
        }

        resp = test_client.post(
            f"/api/v1/rides/{ride_id}/approvals/{BILAL.id}",
            json={"approve": True},
            headers={"X-User-Id": str(ASHA.id)},
        )
        assert resp.status_code == 200

        updated = ws.receive_json()
        assert updated["event"] == "ride_updated"
        assert [p["user"] for p in updated["data"]["passengers"]] == [ASHA.id, BILAL.id]

        fare = ws.receive_json()
        assert fare["event"] == "fare_updated"
        assert fare["room"] == f"user:{ASHA.id}"
        assert fare["data"]["message"] == "Bilal joined! Fares optimized."
        assert fare["data"]["newFare"] == resp.json()["passengers"][0]["fareShare"]


def test_leave_ride_is_acknowledged(test_client):
    with test_client.websocket_connect("/api/v1/ws") as ws:
        ws.send_json({"action": "join_ride", "rideId": 3})
        assert ws.receive_json()["event"] == "subscribed"
        ws.send_json({"action": "leave_ride", "rideId": 3})
        assert ws.receive_json() == {"event": "unsubscribed", "room": "ride:3", "data": {}}


def test_bad_commands_get_errors(test_client):
    with test_client.websocket_connect("/api/v1/ws") as ws:
        ws.send_json({"action": "dance"})
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"action": "join_ride"})
        error = ws.receive_json()
        assert error["event"] == "error"
        assert "join_ride" in error["data"]["detail"]

        ws.send_json(["not", "an", "object"])
        assert ws.receive_json()["event"] == "error"

        ws.send_json({"action": "join_user_room", "userId": BILAL.id})
        assert ws.receive_json()["room"] == f"user:{BILAL.id}"
