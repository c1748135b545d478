"""
Tests for the participant room endpoints

Lobby snapshot, tap/drag moves, self-assignment, free slots and the live
WebSocket stream. Errors come back as friendly messages with their kind.
"""

import asyncio

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from starlette.websockets import WebSocketDisconnect

from gameon.routes.room_slots import stream_room_events
from gameon.services.room_access import Administrator, Participant

ADMIN = Administrator(admin_id="admin-1", scopes=frozenset({"room_slots"}))


def as_player(user_id: str) -> dict:
    return {"X-User-Id": user_id}


@pytest.fixture(name="tournament")
def tournament_fixture(make_tournament, add_participants):
    tournament = make_tournament()
    add_participants(tournament, "u1", "u2", "u3")
    return tournament


def _move(client: TestClient, tournament_id: int, user_id: str, **body):
    return client.post(f"/api/room-slots/tournament/{tournament_id}/move", json=body, headers=as_player(user_id))


def test_get_room_layout(client: TestClient, tournament):
    response = client.get(f"/api/room-slots/tournament/{tournament.id}", headers=as_player("u2"))

    assert response.status_code == 200
    data = response.json()
    assert data["tournament"]["title"] == "BGMI Sunday Scrims"
    assert len(data["teams"]) == 2
    assert data["player_slot"] == {"team_number": 1, "slot_number": 2, "is_captain": False}
    assert data["teams"][0]["captain"] == "u1"
    assert data["teams"][0]["slots"][1]["player_name"] == "U2_IGN"
    assert data["room"]["lock_time"] == "2026-03-01T13:50:00"
    assert data["credentials_available"] is False


def test_get_room_layout_requires_identity_and_membership(client: TestClient, tournament):
    assert client.get(f"/api/room-slots/tournament/{tournament.id}").status_code == 401

    response = client.get(f"/api/room-slots/tournament/{tournament.id}", headers=as_player("stranger"))
    assert response.status_code == 403
    assert response.json()["detail"]["kind"] == "Forbidden"

    response = client.get("/api/room-slots/tournament/999", headers=as_player("u1"))
    assert response.status_code == 404


def test_move_then_conflict(client: TestClient, tournament):
    response = _move(client, tournament.id, "u1", toTeam=2, toSlot=1)
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Slot changed successfully"
    assert data["moved"] is True
    assert data["room"]["player_slot"]["team_number"] == 2
    assert data["room"]["room"]["total_players"] == 3

    response = _move(client, tournament.id, "u2", toTeam=2, toSlot=1)
    assert response.status_code == 409
    assert response.json()["detail"] == {
        "kind": "SlotOccupied",
        "message": "That spot was just taken, pick another.",
    }


def test_move_to_own_slot(client: TestClient, tournament, broadcaster):
    response = _move(client, tournament.id, "u1", toTeam=1, toSlot=1)
    assert response.status_code == 200
    assert response.json()["message"] == "You are already in this slot"
    assert response.json()["moved"] is False
    assert broadcaster.events == []


def test_drag_and_drop(client: TestClient, tournament):
    response = _move(client, tournament.id, "u1", toTeam=2, toSlot=3, fromTeam=1, fromSlot=2, gesture="drag")
    assert response.status_code == 403

    response = _move(client, tournament.id, "u1", toTeam=2, toSlot=3, fromTeam=1, fromSlot=1, gesture="drag")
    assert response.status_code == 200
    assert response.json()["room"]["player_slot"]["slot_number"] == 3

    response = _move(client, tournament.id, "u1", toTeam=2, toSlot=4, gesture="drag")
    assert response.status_code == 422


def test_invalid_targets_are_rejected(client: TestClient, tournament):
    response = _move(client, tournament.id, "u1", toTeam=9, toSlot=1)
    assert response.status_code == 422
    assert response.json()["detail"]["kind"] == "ValidationError"

    response = _move(client, tournament.id, "u1", toTeam=1, toSlot=2, gesture="swipe")
    assert response.status_code == 422


def test_malformed_move_bodies_get_a_kind(client: TestClient, tournament):
    response = _move(client, tournament.id, "u1", toTeam=0, toSlot=1)
    assert response.status_code == 422
    assert response.json()["detail"] == {
        "kind": "ValidationError",
        "message": "That slot does not exist in this room.",
    }

    response = _move(client, tournament.id, "u1", toTeam="two", toSlot=1)
    assert response.status_code == 422
    assert response.json()["detail"]["kind"] == "ValidationError"


def test_locked_room_rejects_moves(client: TestClient, session, room_service, tournament):
    room_service.set_room_lock(session, ADMIN, tournament.id, True)

    response = _move(client, tournament.id, "u1", toTeam=2, toSlot=1)

    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "RoomLocked"
    assert response.json()["detail"]["message"].startswith("Slots are locked")

    layout = client.get(f"/api/room-slots/tournament/{tournament.id}", headers=as_player("u1")).json()
    assert layout["can_move"] is False


def test_settings_block_changes(client: TestClient, session, room_service, tournament):
    room_service.update_settings(session, ADMIN, tournament.id, {"allow_team_switch": False})

    response = _move(client, tournament.id, "u3", toTeam=2, toSlot=1)
    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "TeamSwitchNotAllowed"

    assert _move(client, tournament.id, "u3", toTeam=1, toSlot=4).status_code == 200

    room_service.update_settings(session, ADMIN, tournament.id, {"allow_slot_change": False})
    response = _move(client, tournament.id, "u3", toTeam=1, toSlot=3)
    assert response.status_code == 409
    assert response.json()["detail"]["kind"] == "ChangeNotAllowed"


def test_assign_self(client: TestClient, session, room_service, tournament, add_participants, broadcaster):
    room_service.get_room(session, ADMIN, tournament.id)
    add_participants(tournament, "u4")

    response = client.post(f"/api/room-slots/tournament/{tournament.id}/assign", headers=as_player("u4"))
    assert response.status_code == 200
    assert response.json()["message"] == "Player assigned to slot successfully"
    assert response.json()["room"]["player_slot"]["slot_number"] == 4
    assert broadcaster.names() == ["playerAssigned"]

    response = client.post(f"/api/room-slots/tournament/{tournament.id}/assign", headers=as_player("u4"))
    assert response.json()["message"] == "Player already assigned to slot"
    assert response.json()["moved"] is False


def test_available_slots(client: TestClient, tournament):
    response = client.get(f"/api/room-slots/tournament/{tournament.id}/available", headers=as_player("u1"))

    assert response.status_code == 200
    data = response.json()
    assert data["total_slots"] == 8
    assert data["total_players"] == 3
    assert data["total_available"] == 5
    assert data["available_slots"][0] == {"team_number": 1, "slot_number": 4}


def test_websocket_streams_snapshot_then_events(client: TestClient, session, room_service, tournament):
    with client.websocket_connect(f"/api/room-slots/tournament/{tournament.id}/ws?user_id=u1") as websocket:
        snapshot = websocket.receive_json()
        assert snapshot["event"] == "roomSnapshot"
        assert snapshot["sequence"] == 0
        assert snapshot["room"]["total_players"] == 3

        room_service.move_player(session, Participant("u2"), tournament.id, "u2", 2, 2)

        event = websocket.receive_json()
        assert event["event"] == "playerMoved"
        assert event["sequence"] == 1
        assert event["actor"] == "u2"
        assert event["details"]["to_team"] == 2
        assert event["room"]["teams"][1]["slots"][1]["player"] == "u2"


def test_websocket_rejects_outsiders(client: TestClient, tournament):
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/room-slots/tournament/{tournament.id}/ws?user_id=stranger"):
            pass
    assert exc.value.code == 4403

    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect(f"/api/room-slots/tournament/{tournament.id}/ws"):
            pass
    assert exc.value.code == 4401


def test_stream_releases_subscription_when_snapshot_fails(room_service, tournament, broadcaster, monkeypatch):
    class UnusedWebSocket:
        async def close(self, code=1000):
            raise AssertionError("socket should not be closed on a database error")

    def unavailable_session():
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    monkeypatch.setattr(room_service, "session_factory", unavailable_session)

    with pytest.raises(OperationalError):
        asyncio.run(stream_room_events(UnusedWebSocket(), room_service, tournament.id, Participant("u1")))

    assert broadcaster.subscriber_count(tournament.id) == 0
