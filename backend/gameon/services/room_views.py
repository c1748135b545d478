"""
Room views: what the participant lobby and the admin room console render.

Both views are built from a RoomSlotStore snapshot, never from client state.
The participant view marks which slot the player may drag and which slots
are valid drop/tap targets right now; the admin view exposes every slot as
a source/target plus lock ownership and room statistics.

Gestures (drag-and-drop or tap) from the lobby are translated here into a
plain move request for the assignment engine.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from gameon.models.tournament import Tournament
from gameon.services.room_errors import RoomSlotError, ValidationError
from gameon.services.room_slot_store import Location, RoomSlotStore
from gameon.utils.timestamps import isoformat

GESTURE_TAP = "tap"
GESTURE_DRAG = "drag"

PARTICIPANT_MESSAGES = {
    "NotFound": "This room or slot no longer exists. Refresh the lobby.",
    "Forbidden": "You can only move your own slot.",
    "RoomLocked": "Slots are locked! The tournament starts soon.",
    "SlotLocked": "That slot is locked by the organizers.",
    "SlotOccupied": "That spot was just taken, pick another.",
    "ChangeNotAllowed": "Slot changes are turned off for this tournament.",
    "TeamSwitchNotAllowed": "You can only move within your own team.",
    "Full": "The room is full. No free slots are left.",
    "ValidationError": "That slot does not exist in this room.",
    "ConcurrentUpdate": "The room just changed. Refresh and try again.",
}


@dataclass
class MoveRequest:
    player_id: str
    to_team: int
    to_slot: int
    expected_from: Optional[Location] = None


def translate_gesture(
    user_id: str,
    to_team: int,
    to_slot: int,
    gesture: str = GESTURE_TAP,
    from_team: Optional[int] = None,
    from_slot: Optional[int] = None,
) -> MoveRequest:
    """
    Lobby gesture -> move request for the player themselves.

    A tap only names the target. A drag also names its source, which must be
    the player's own seat; the service checks that under the room lock.
    """
    if gesture == GESTURE_TAP:
        return MoveRequest(user_id, to_team, to_slot)
    if gesture == GESTURE_DRAG:
        if from_team is None or from_slot is None:
            raise ValidationError("A drag needs the source team and slot")
        return MoveRequest(user_id, to_team, to_slot, expected_from=(from_team, from_slot))
    raise ValidationError(f"Unknown gesture '{gesture}'")


def present_participant_error(error: RoomSlotError) -> Dict[str, Any]:
    return {
        "kind": error.kind,
        "message": PARTICIPANT_MESSAGES.get(error.kind, error.message),
    }


def present_admin_error(error: RoomSlotError) -> Dict[str, Any]:
    """Raw kind, engine message and whatever player/slot context was attached."""
    return error.to_dict()


def _tournament_summary(tournament: Tournament) -> Dict[str, Any]:
    return {
        "id": tournament.id,
        "title": tournament.title,
        "tournament_type": tournament.tournament_type,
        "status": tournament.status,
        "start_date": isoformat(tournament.start_date),
        "max_participants": tournament.max_participants,
        "current_participants": tournament.current_participants,
    }


def _credentials(tournament: Tournament) -> Optional[Dict[str, Any]]:
    if not tournament.credentials_released:
        return None
    return {
        "room_id": tournament.room_id,
        "password": tournament.room_password,
        "map": tournament.room_map,
        "perspective": tournament.room_perspective,
        "released_at": isoformat(tournament.credentials_released_at),
    }


def _room_header(store: RoomSlotStore, lock_time: Optional[datetime]) -> Dict[str, Any]:
    settings = store.settings
    return {
        "revision": store.revision,
        "max_teams": store.max_teams,
        "max_players_per_team": store.max_players_per_team,
        "total_players": store.total_players,
        "is_locked": store.is_locked,
        "archived": store.is_archived,
        "lock_time": isoformat(lock_time),
        "settings": {
            "allow_slot_change": settings.allow_slot_change,
            "allow_team_switch": settings.allow_team_switch,
            "auto_assign_teams": settings.auto_assign_teams,
            "slot_change_deadline": isoformat(settings.slot_change_deadline),
        },
    }


class ParticipantRoomView:
    def __init__(
        self,
        store: RoomSlotStore,
        tournament: Tournament,
        user_id: str,
        names: Optional[Dict[str, str]] = None,
        lock_time: Optional[datetime] = None,
    ):
        self.store = store
        self.tournament = tournament
        self.user_id = user_id
        self.names = names or {}
        self.lock_time = lock_time

    @property
    def own_location(self) -> Optional[Location]:
        return self.store.find_slot_for_player(self.user_id)

    @property
    def can_move(self) -> bool:
        settings = self.store.settings
        return not self.store.is_locked and not self.store.is_archived and settings.allow_slot_change

    def is_valid_target(self, team_number: int, slot_number: int) -> bool:
        if not self.can_move:
            return False
        slot = self.store.get_slot(team_number, slot_number)
        if not slot.is_empty or slot.is_locked:
            return False
        own = self.own_location
        if own is None:
            return True
        if self.store.get_slot(*own).is_locked:
            return False
        return own[0] == team_number or self.store.settings.allow_team_switch

    def render(self) -> Dict[str, Any]:
        own = self.own_location
        teams = []
        for team in self.store.teams:
            slots = []
            for slot in team.slots:
                is_mine = slot.player is not None and slot.player == self.user_id
                slots.append(
                    {
                        "slot_number": slot.slot_number,
                        "player": slot.player,
                        "player_name": self.names.get(slot.player, slot.player) if slot.player else None,
                        "is_locked": slot.is_locked,
                        "is_mine": is_mine,
                        "draggable": is_mine and self.can_move and not slot.is_locked,
                        "is_valid_target": self.is_valid_target(team.team_number, slot.slot_number),
                    }
                )
            teams.append(
                {
                    "team_number": team.team_number,
                    "team_name": team.team_name,
                    "captain": team.captain,
                    "captain_name": self.names.get(team.captain, team.captain) if team.captain else None,
                    "is_complete": team.is_complete,
                    "player_count": team.player_count,
                    "slots": slots,
                }
            )

        player_slot = None
        if own is not None:
            player_slot = {
                "team_number": own[0],
                "slot_number": own[1],
                "is_captain": self.store.get_team(own[0]).captain == self.user_id,
            }

        credentials = _credentials(self.tournament)
        return {
            "tournament": _tournament_summary(self.tournament),
            "room": _room_header(self.store, self.lock_time),
            "teams": teams,
            "player_slot": player_slot,
            "can_move": self.can_move,
            "credentials_available": credentials is not None,
            "credentials": credentials,
        }


class AdminRoomView:
    def __init__(
        self,
        store: RoomSlotStore,
        tournament: Tournament,
        names: Optional[Dict[str, str]] = None,
        lock_time: Optional[datetime] = None,
        stats: Optional[Dict[str, Any]] = None,
    ):
        self.store = store
        self.tournament = tournament
        self.names = names or {}
        self.lock_time = lock_time
        self.stats = stats or {}

    def render(self) -> Dict[str, Any]:
        teams = []
        for team in self.store.teams:
            teams.append(
                {
                    "team_number": team.team_number,
                    "team_name": team.team_name,
                    "captain": team.captain,
                    "captain_name": self.names.get(team.captain, team.captain) if team.captain else None,
                    "is_complete": team.is_complete,
                    "player_count": team.player_count,
                    "slots": [
                        {
                            "slot_number": slot.slot_number,
                            "player": slot.player,
                            "player_name": self.names.get(slot.player, slot.player) if slot.player else None,
                            "is_locked": slot.is_locked,
                            "locked_by": slot.locked_by,
                            "locked_at": isoformat(slot.locked_at),
                            # Admin moves override locks but never overwrite a player
                            "can_drag": slot.player is not None,
                            "can_drop": slot.player is None,
                        }
                        for slot in team.slots
                    ],
                }
            )

        room = _room_header(self.store, self.lock_time)
        room["locked_by"] = self.store.locked_by
        room["locked_at"] = isoformat(self.store.locked_at)

        tournament = _tournament_summary(self.tournament)
        tournament["credentials_released"] = self.tournament.credentials_released
        tournament["room_details"] = {
            "room_id": self.tournament.room_id,
            "password": self.tournament.room_password,
            "map": self.tournament.room_map,
            "perspective": self.tournament.room_perspective,
        }
        return {
            "tournament": tournament,
            "room": room,
            "teams": teams,
            "stats": self.stats,
            "unseated_players": sorted(
                user_id for user_id in self.names if self.store.find_slot_for_player(user_id) is None
            ),
        }
