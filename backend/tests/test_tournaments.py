"""
Tests for the tournament endpoints the room depends on: create, join
(with auto-seating), start-date/status changes.
"""

from datetime import datetime

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from gameon.database import get_session
from gameon.main import app

ADMIN_HEADERS = {"X-Admin-Id": "admin-1", "X-Admin-Scopes": "*"}


def _create(client: TestClient, **overrides) -> dict:
    body = {
        "title": "Weekend Duo Clash",
        "tournament_type": "duo",
        "start_date": "2026-03-01T14:00:00Z",
        "max_participants": 4,
    }
    body.update(overrides)
    response = client.post("/api/tournaments", json=body)
    assert response.status_code == 201
    return response.json()


def _join(client: TestClient, tournament_id: int, user_id: str):
    return client.post(
        f"/api/tournaments/{tournament_id}/participants",
        json={"userId": user_id, "displayName": f"{user_id}_IGN"},
    )


def test_health(client: TestClient):
    response = client.get("/api/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


def test_create_and_list_tournaments(client: TestClient):
    created = _create(client)
    assert created["start_date"] == "2026-03-01T14:00:00"
    assert created["current_participants"] == 0

    listed = client.get("/api/tournaments").json()
    assert [t["id"] for t in listed] == [created["id"]]
    assert client.get(f"/api/tournaments/{created['id']}").json()["title"] == "Weekend Duo Clash"
    assert client.get("/api/tournaments/999").status_code == 404


def test_create_rejects_unknown_type(client: TestClient):
    response = client.post(
        "/api/tournaments",
        json={"title": "Trio Night", "tournament_type": "trio", "start_date": "2026-03-01T14:00:00Z"},
    )
    assert response.status_code == 422


def test_join_seats_players_in_order(client: TestClient, broadcaster):
    tournament = _create(client)

    first = _join(client, tournament["id"], "u1")
    assert first.status_code == 201
    assert (first.json()["team_number"], first.json()["slot_number"]) == (1, 1)

    second = _join(client, tournament["id"], "u2")
    assert (second.json()["team_number"], second.json()["slot_number"]) == (1, 2)

    third = _join(client, tournament["id"], "u3")
    assert (third.json()["team_number"], third.json()["slot_number"]) == (2, 1)

    assert client.get(f"/api/tournaments/{tournament['id']}").json()["current_participants"] == 3
    assert broadcaster.names().count("playerAssigned") == 2


def test_join_rejections(client: TestClient):
    tournament = _create(client, max_participants=2)
    _join(client, tournament["id"], "u1")

    response = _join(client, tournament["id"], "u1")
    assert response.status_code == 409

    _join(client, tournament["id"], "u2")
    response = _join(client, tournament["id"], "u3")
    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "Full"

    closed = _create(client, status="completed")
    assert _join(client, closed["id"], "u1").status_code == 409


def test_join_fails_when_only_locked_slots_remain(client: TestClient):
    tournament = _create(client, max_participants=2)
    assert _join(client, tournament["id"], "u1").status_code == 201

    client.post(
        f"/api/admin/room-slots/tournament/{tournament['id']}/toggle-slot-lock",
        json={"teamNumber": 1, "slotNumber": 2, "action": "lock"},
        headers=ADMIN_HEADERS,
    )

    response = _join(client, tournament["id"], "u2")
    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "Full"

    # Membership rolled back with the failed seat
    assert client.get(f"/api/tournaments/{tournament['id']}").json()["current_participants"] == 1
    layout = client.get(f"/api/admin/room-slots/tournament/{tournament['id']}", headers=ADMIN_HEADERS).json()
    assert layout["unseated_players"] == []
    assert layout["room"]["total_players"] == 1


def test_join_without_auto_assign_leaves_player_unseated(client: TestClient):
    tournament = _create(client)
    _join(client, tournament["id"], "u1")
    client.put(
        f"/api/admin/room-slots/tournament/{tournament['id']}/settings",
        json={"autoAssignTeams": False},
        headers=ADMIN_HEADERS,
    )

    response = _join(client, tournament["id"], "u2")

    assert response.status_code == 201
    assert response.json()["team_number"] is None
    layout = client.get(f"/api/admin/room-slots/tournament/{tournament['id']}", headers=ADMIN_HEADERS).json()
    assert layout["unseated_players"] == ["u2"]


def test_start_date_change_moves_the_lock(client: TestClient, room_service):
    tournament = _create(client)
    _join(client, tournament["id"], "u1")
    assert room_service.scheduler.fire_time(tournament["id"]) == datetime(2026, 3, 1, 13, 50)

    response = client.patch(f"/api/tournaments/{tournament['id']}", json={"start_date": "2026-03-01T18:30:00+05:30"})

    assert response.status_code == 200
    assert room_service.scheduler.fire_time(tournament["id"]) == datetime(2026, 3, 1, 12, 50)


@pytest.mark.parametrize("status", ["completed", "cancelled"])
def test_final_status_archives_room(client: TestClient, room_service, status):
    tournament = _create(client)
    _join(client, tournament["id"], "u1")

    response = client.patch(f"/api/tournaments/{tournament['id']}", json={"status": status})
    assert response.status_code == 200
    assert room_service.scheduler.fire_time(tournament["id"]) is None

    layout = client.get(f"/api/room-slots/tournament/{tournament['id']}", headers={"X-User-Id": "u1"}).json()
    assert layout["room"]["archived"] is True
    assert layout["can_move"] is False

    response = client.post(
        f"/api/room-slots/tournament/{tournament['id']}/move",
        json={"toTeam": 2, "toSlot": 1},
        headers={"X-User-Id": "u1"},
    )
    assert response.status_code == 404


def test_database_errors_return_503(client: TestClient):
    def unavailable_session():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    app.dependency_overrides[get_session] = unavailable_session

    response = client.get("/api/tournaments")

    assert response.status_code == 503
    assert response.json()["detail"]["kind"] == "Unavailable"
    assert "locked" not in response.text
