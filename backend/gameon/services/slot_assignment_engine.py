"""
Slot Assignment Engine: validated moves on a RoomSlotStore.

``request_move`` turns "put player X in (team, slot)" into a store mutation,
checking in this order and rejecting before anything is written:

1. Team/slot numbers inside the configured range (ValidationError)
2. Actor may move this player (Forbidden)
3. Room lock, then source/destination slot locks (RoomLocked / SlotLocked),
   skipped for admin override
4. Destination empty, or already holding the same player (no-op), else SlotOccupied
5. Room settings for participants (ChangeNotAllowed / TeamSwitchNotAllowed)

The engine is not thread-safe; callers hold the room's writer lock.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from gameon.services.room_access import Actor, RoomAccessGateway
from gameon.services.room_errors import (
    ChangeNotAllowed,
    Full,
    NotFound,
    RoomLocked,
    SlotLocked,
    SlotOccupied,
    TeamSwitchNotAllowed,
)
from gameon.services.room_slot_store import Location, RoomSlotStore
from gameon.utils.timestamps import utcnow


@dataclass
class MoveResult:
    player_id: str
    from_location: Optional[Location]
    to_location: Location
    moved: bool

    @property
    def is_first_placement(self) -> bool:
        return self.moved and self.from_location is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player_id": self.player_id,
            "from_team": self.from_location[0] if self.from_location else None,
            "from_slot": self.from_location[1] if self.from_location else None,
            "to_team": self.to_location[0],
            "to_slot": self.to_location[1],
            "moved": self.moved,
        }


class SlotAssignmentEngine:
    def __init__(
        self,
        gateway: Optional[RoomAccessGateway] = None,
        clock: Callable[[], Any] = utcnow,
    ):
        self.gateway = gateway or RoomAccessGateway()
        self.clock = clock

    def request_move(
        self,
        store: RoomSlotStore,
        actor: Actor,
        player_id: str,
        to_team: int,
        to_slot: int,
    ) -> MoveResult:
        to_location = store.check_location(to_team, to_slot)
        current = store.find_slot_for_player(player_id)

        self.gateway.authorize_move(actor, player_id)
        override = self.gateway.is_override(actor)

        destination = store.get_slot(*to_location)
        if not override:
            if store.is_locked:
                raise RoomLocked("Slots are locked for this room", team=to_team, slot=to_slot)
            if destination.is_locked:
                raise SlotLocked(f"Team {to_team} slot {to_slot} is locked", team=to_team, slot=to_slot)
            if current is not None and store.get_slot(*current).is_locked:
                raise SlotLocked(
                    f"Your current slot (team {current[0]} slot {current[1]}) is locked",
                    team=current[0],
                    slot=current[1],
                )

        if destination.player == player_id:
            return MoveResult(player_id, current, to_location, moved=False)
        if destination.player is not None:
            raise SlotOccupied(
                f"Team {to_team} slot {to_slot} is already taken",
                team=to_team,
                slot=to_slot,
                player_id=player_id,
            )

        if not override:
            settings = store.settings
            if not settings.allow_slot_change:
                raise ChangeNotAllowed("Slot changes are not allowed in this room")
            if current is not None and current[0] != to_team and not settings.allow_team_switch:
                raise TeamSwitchNotAllowed(
                    f"Switching from team {current[0]} to team {to_team} is not allowed",
                    team=to_team,
                )

        store.apply_move(player_id, current, to_location, override=override)
        return MoveResult(player_id, current, to_location, moved=True)

    def auto_assign(self, store: RoomSlotStore, player_id: str) -> MoveResult:
        """
        Seat a newly joined player in the first free, unlocked slot
        (lowest team, then lowest slot). Already seated players keep their seat.

        Raises:
            Full: no free slot left
        """
        existing = store.find_slot_for_player(player_id)
        if existing is not None:
            return MoveResult(player_id, existing, existing, moved=False)

        location = store.first_free_slot()
        if location is None:
            raise Full(
                f"No available slots in room for tournament {store.tournament_id}",
                player_id=player_id,
            )
        store.apply_move(player_id, None, location)
        return MoveResult(player_id, None, location, moved=True)

    def swap_players(self, store: RoomSlotStore, actor: Actor, player_a: str, player_b: str) -> Tuple[Location, Location]:
        self.gateway.require_admin(actor, "swap players")
        return store.swap(player_a, player_b)

    def remove_player(self, store: RoomSlotStore, actor: Actor, player_id: str) -> Location:
        self.gateway.require_admin(actor, "remove players")
        location = store.vacate(player_id)
        if location is None:
            raise NotFound(f"Player {player_id} is not seated in this room", player_id=player_id)
        return location

    def set_slot_lock(self, store: RoomSlotStore, actor: Actor, team_number: int, slot_number: int, locked: bool) -> bool:
        admin = self.gateway.require_admin(actor, "lock slots")
        store.check_location(team_number, slot_number)
        return store.set_slot_lock(team_number, slot_number, locked, locked_by=admin.admin_id, now=self.clock())

    def set_room_lock(self, store: RoomSlotStore, actor: Actor, locked: bool) -> bool:
        admin = self.gateway.require_admin(actor, "lock the room")
        return store.set_room_lock(locked, locked_by=admin.admin_id, now=self.clock())

    def update_settings(self, store: RoomSlotStore, actor: Actor, partial: Dict[str, Any]) -> Dict[str, Any]:
        self.gateway.require_admin(actor, "change room settings")
        return store.update_settings(partial)
