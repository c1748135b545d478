"""
Room Slot Store: canonical state of one tournament room.

Holds the team/slot grid, the room-wide lock and the room settings, and
exposes only mutators that keep the room's invariants:

1. **Uniqueness**: a player occupies at most one slot in the whole room
2. **Derived counts**: ``total_players`` and ``Team.is_complete`` are computed
   from slot occupancy and cannot be assigned
3. **Locks**: a locked slot (or a locked room) is only written with ``override``
4. **Capacity**: a slot holds one player; the room never holds more players
   than ``max_teams * max_players_per_team``

Every mutator validates first and writes last, so a raised error never leaves
the store partially changed. Authorization and settings rules live in the
assignment engine; this module only guards the data.
"""

import math
from dataclasses import asdict, dataclass, fields
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from gameon.models.room_slot import RoomSlot
from gameon.services.room_errors import NotFound, SlotLocked, SlotOccupied, ValidationError
from gameon.utils.timestamps import isoformat, parse_timestamp, utcnow

Location = Tuple[int, int]  # (team_number, slot_number)

PLAYERS_PER_TEAM = {
    "solo": 1,
    "duo": 2,
    "squad": 4,
}


class Slot:
    """One seat in a team. Occupancy and lock state are read-only here."""

    def __init__(
        self,
        slot_number: int,
        player: Optional[str] = None,
        is_locked: bool = False,
        locked_by: Optional[str] = None,
        locked_at: Optional[datetime] = None,
    ):
        self._slot_number = slot_number
        self._player = player
        self._is_locked = is_locked
        self._locked_by = locked_by
        self._locked_at = locked_at

    @property
    def slot_number(self) -> int:
        return self._slot_number

    @property
    def player(self) -> Optional[str]:
        return self._player

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    @property
    def locked_by(self) -> Optional[str]:
        return self._locked_by

    @property
    def locked_at(self) -> Optional[datetime]:
        return self._locked_at

    @property
    def is_empty(self) -> bool:
        return self._player is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "slot_number": self._slot_number,
            "player": self._player,
            "is_locked": self._is_locked,
            "locked_by": self._locked_by,
            "locked_at": isoformat(self._locked_at),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Slot":
        return cls(
            slot_number=data["slot_number"],
            player=data.get("player"),
            is_locked=bool(data.get("is_locked", False)),
            locked_by=data.get("locked_by"),
            locked_at=parse_timestamp(data.get("locked_at")),
        )


class Team:
    def __init__(
        self,
        team_number: int,
        slots: Iterable[Slot],
        team_name: Optional[str] = None,
        captain: Optional[str] = None,
    ):
        self._team_number = team_number
        self._slots: List[Slot] = list(slots)
        self._team_name = team_name or f"Team {team_number}"
        self._captain = captain

    @property
    def team_number(self) -> int:
        return self._team_number

    @property
    def team_name(self) -> str:
        return self._team_name

    @property
    def captain(self) -> Optional[str]:
        return self._captain

    @property
    def slots(self) -> Tuple[Slot, ...]:
        return tuple(self._slots)

    @property
    def players(self) -> List[str]:
        return [s.player for s in self._slots if s.player is not None]

    @property
    def player_count(self) -> int:
        return len(self.players)

    @property
    def is_complete(self) -> bool:
        return all(s.player is not None for s in self._slots)

    def _refresh_captain(self) -> None:
        """Keep the captain seated: hand over to the lowest occupied slot, or clear."""
        players = self.players
        if self._captain not in players:
            self._captain = players[0] if players else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "team_number": self._team_number,
            "team_name": self._team_name,
            "captain": self._captain,
            "slots": [s.to_dict() for s in self._slots],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Team":
        return cls(
            team_number=data["team_number"],
            slots=[Slot.from_dict(s) for s in data.get("slots", [])],
            team_name=data.get("team_name"),
            captain=data.get("captain"),
        )


@dataclass
class RoomSettings:
    allow_slot_change: bool = True
    allow_team_switch: bool = True
    auto_assign_teams: bool = True
    slot_change_deadline: Optional[datetime] = None


SETTING_NAMES = tuple(f.name for f in fields(RoomSettings))
_BOOLEAN_SETTINGS = ("allow_slot_change", "allow_team_switch", "auto_assign_teams")


class RoomSlotStore:
    """In-memory room state for one tournament. See module docstring for invariants."""

    def __init__(
        self,
        tournament_id: int,
        tournament_type: str,
        max_teams: int,
        max_players_per_team: int,
        teams: Optional[Iterable[Team]] = None,
        is_locked: bool = False,
        locked_by: Optional[str] = None,
        locked_at: Optional[datetime] = None,
        settings: Optional[RoomSettings] = None,
        revision: int = 0,
        auto_lock_applied_for: Optional[datetime] = None,
        archived_at: Optional[datetime] = None,
    ):
        if max_teams < 1 or max_players_per_team < 1:
            raise ValidationError("Room needs at least one team and one slot per team")
        self._tournament_id = tournament_id
        self._tournament_type = tournament_type
        self._max_teams = max_teams
        self._max_players_per_team = max_players_per_team
        if teams is None:
            teams = [
                Team(t, [Slot(s) for s in range(1, max_players_per_team + 1)])
                for t in range(1, max_teams + 1)
            ]
        self._teams: List[Team] = list(teams)
        self._is_locked = is_locked
        self._locked_by = locked_by
        self._locked_at = locked_at
        self._settings = settings or RoomSettings()
        self._revision = revision
        self._auto_lock_applied_for = auto_lock_applied_for
        self._archived_at = archived_at

    # ------------------------------------------------------------------
    # Construction / persistence
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, tournament_id: int, tournament_type: str, max_participants: int) -> "RoomSlotStore":
        """Build an empty room sized for the tournament type and capacity."""
        if tournament_type not in PLAYERS_PER_TEAM:
            raise ValidationError(f"Unknown tournament type '{tournament_type}'")
        per_team = PLAYERS_PER_TEAM[tournament_type]
        max_teams = max(1, math.ceil(max_participants / per_team))
        return cls(tournament_id, tournament_type, max_teams, per_team)

    @classmethod
    def from_record(cls, record: RoomSlot) -> "RoomSlotStore":
        return cls(
            tournament_id=record.tournament_id,
            tournament_type=record.tournament_type,
            max_teams=record.max_teams,
            max_players_per_team=record.max_players_per_team,
            teams=[Team.from_dict(t) for t in record.teams or []],
            is_locked=record.is_locked,
            locked_by=record.locked_by,
            locked_at=record.locked_at,
            settings=RoomSettings(
                allow_slot_change=record.allow_slot_change,
                allow_team_switch=record.allow_team_switch,
                auto_assign_teams=record.auto_assign_teams,
                slot_change_deadline=record.slot_change_deadline,
            ),
            revision=record.revision,
            auto_lock_applied_for=record.auto_lock_applied_for,
            archived_at=record.archived_at,
        )

    def to_record(self, record: Optional[RoomSlot] = None) -> RoomSlot:
        """Write state onto ``record`` (or a new row). ``teams`` is reassigned so the JSON column is flagged dirty."""
        if record is None:
            record = RoomSlot(
                tournament_id=self._tournament_id,
                tournament_type=self._tournament_type,
                max_teams=self._max_teams,
                max_players_per_team=self._max_players_per_team,
            )
        record.teams = [t.to_dict() for t in self._teams]
        record.is_locked = self._is_locked
        record.locked_by = self._locked_by
        record.locked_at = self._locked_at
        record.allow_slot_change = self._settings.allow_slot_change
        record.allow_team_switch = self._settings.allow_team_switch
        record.auto_assign_teams = self._settings.auto_assign_teams
        record.slot_change_deadline = self._settings.slot_change_deadline
        record.revision = self._revision
        record.auto_lock_applied_for = self._auto_lock_applied_for
        record.archived_at = self._archived_at
        return record

    # ------------------------------------------------------------------
    # Read-only state
    # ------------------------------------------------------------------

    @property
    def tournament_id(self) -> int:
        return self._tournament_id

    @property
    def tournament_type(self) -> str:
        return self._tournament_type

    @property
    def max_teams(self) -> int:
        return self._max_teams

    @property
    def max_players_per_team(self) -> int:
        return self._max_players_per_team

    @property
    def capacity(self) -> int:
        return self._max_teams * self._max_players_per_team

    @property
    def teams(self) -> Tuple[Team, ...]:
        return tuple(self._teams)

    @property
    def is_locked(self) -> bool:
        return self._is_locked

    @property
    def locked_by(self) -> Optional[str]:
        return self._locked_by

    @property
    def locked_at(self) -> Optional[datetime]:
        return self._locked_at

    @property
    def settings(self) -> RoomSettings:
        # Copy: settings only change through update_settings
        return RoomSettings(**asdict(self._settings))

    @property
    def total_players(self) -> int:
        return sum(team.player_count for team in self._teams)

    @property
    def revision(self) -> int:
        return self._revision

    @property
    def auto_lock_applied_for(self) -> Optional[datetime]:
        return self._auto_lock_applied_for

    @property
    def archived_at(self) -> Optional[datetime]:
        return self._archived_at

    @property
    def is_archived(self) -> bool:
        return self._archived_at is not None

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def check_location(self, team_number: Any, slot_number: Any) -> Location:
        """Validate a (team, slot) pair against the configured range."""
        for label, value, upper in (
            ("team", team_number, self._max_teams),
            ("slot", slot_number, self._max_players_per_team),
        ):
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValidationError(f"{label.capitalize()} number must be an integer", **{label: value})
            if not 1 <= value <= upper:
                raise ValidationError(
                    f"{label.capitalize()} number {value} is outside 1..{upper}", **{label: value}
                )
        return team_number, slot_number

    def get_team(self, team_number: int) -> Team:
        for team in self._teams:
            if team.team_number == team_number:
                return team
        raise NotFound(f"Team {team_number} not found", team=team_number)

    def get_slot(self, team_number: int, slot_number: int) -> Slot:
        team = self.get_team(team_number)
        for slot in team._slots:
            if slot.slot_number == slot_number:
                return slot
        raise NotFound(f"Slot {slot_number} not found in team {team_number}", team=team_number, slot=slot_number)

    def find_slot_for_player(self, player_id: str) -> Optional[Location]:
        for team in self._teams:
            for slot in team._slots:
                if slot.player == player_id:
                    return team.team_number, slot.slot_number
        return None

    def first_free_slot(self) -> Optional[Location]:
        """Lowest team, then lowest slot, that is empty and unlocked."""
        for team in sorted(self._teams, key=lambda t: t.team_number):
            for slot in sorted(team._slots, key=lambda s: s.slot_number):
                if slot.is_empty and not slot.is_locked:
                    return team.team_number, slot.slot_number
        return None

    def available_slots(self) -> List[Location]:
        return [
            (team.team_number, slot.slot_number)
            for team in self._teams
            for slot in team._slots
            if slot.is_empty and not slot.is_locked
        ]

    # ------------------------------------------------------------------
    # Mutators
    # ------------------------------------------------------------------

    def apply_move(
        self,
        player_id: str,
        from_location: Optional[Location],
        to_location: Location,
        override: bool = False,
    ) -> None:
        """
        Move (or first-place) a player.

        Clears ``from_location`` (if given) and writes ``to_location`` in one step.
        ``override`` skips lock checks (admin); occupancy is always enforced.

        Raises:
            NotFound: team/slot does not exist
            SlotOccupied: destination holds a different player
            SlotLocked: source or destination locked without override
            ValidationError: ``from_location`` does not hold ``player_id``
        """
        if not player_id:
            raise ValidationError("Player id is required")

        dest_team = self.get_team(to_location[0])
        dest = self.get_slot(*to_location)

        source_team = None
        source = None
        if from_location is not None:
            source_team = self.get_team(from_location[0])
            source = self.get_slot(*from_location)
            if source.player != player_id:
                raise ValidationError(
                    f"Player {player_id} is not in team {from_location[0]} slot {from_location[1]}",
                    player_id=player_id,
                )
        else:
            existing = self.find_slot_for_player(player_id)
            if existing is not None and existing != to_location:
                raise ValidationError(
                    f"Player {player_id} is already seated in team {existing[0]} slot {existing[1]}",
                    player_id=player_id,
                )

        if dest.player is not None and dest.player != player_id:
            raise SlotOccupied(
                f"Team {to_location[0]} slot {to_location[1]} is already taken",
                team=to_location[0],
                slot=to_location[1],
            )
        if not override:
            if dest.is_locked:
                raise SlotLocked(
                    f"Team {to_location[0]} slot {to_location[1]} is locked",
                    team=to_location[0],
                    slot=to_location[1],
                )
            if source is not None and source.is_locked:
                raise SlotLocked(
                    f"Team {from_location[0]} slot {from_location[1]} is locked",
                    team=from_location[0],
                    slot=from_location[1],
                )

        if source is dest:
            return

        # Validated: write
        if source is not None:
            source._player = None
            source_team._refresh_captain()
        dest._player = player_id
        if dest_team._captain is None:
            dest_team._captain = player_id
        dest_team._refresh_captain()

    def vacate(self, player_id: str) -> Optional[Location]:
        """Remove a player from the room. Returns the freed location, if any."""
        location = self.find_slot_for_player(player_id)
        if location is None:
            return None
        team = self.get_team(location[0])
        self.get_slot(*location)._player = None
        team._refresh_captain()
        return location

    def swap(self, player_a: str, player_b: str) -> Tuple[Location, Location]:
        """Exchange the seats of two seated players atomically (lock override)."""
        if player_a == player_b:
            raise ValidationError("Cannot swap a player with themselves", player_id=player_a)
        loc_a = self.find_slot_for_player(player_a)
        loc_b = self.find_slot_for_player(player_b)
        if loc_a is None:
            raise NotFound(f"Player {player_a} is not seated", player_id=player_a)
        if loc_b is None:
            raise NotFound(f"Player {player_b} is not seated", player_id=player_b)

        team_a, team_b = self.get_team(loc_a[0]), self.get_team(loc_b[0])
        self.get_slot(*loc_a)._player = player_b
        self.get_slot(*loc_b)._player = player_a
        if team_a is not team_b:
            # Captaincy stays with the seat
            if team_a._captain == player_a:
                team_a._captain = player_b
            if team_b._captain == player_b:
                team_b._captain = player_a
        team_a._refresh_captain()
        team_b._refresh_captain()
        return loc_a, loc_b

    def set_slot_lock(
        self,
        team_number: int,
        slot_number: int,
        locked: bool,
        locked_by: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        """Lock/unlock one slot. Idempotent; returns True if the state changed."""
        slot = self.get_slot(team_number, slot_number)
        if slot.is_locked == locked:
            return False
        slot._is_locked = locked
        slot._locked_by = locked_by if locked else None
        slot._locked_at = (now or utcnow()) if locked else None
        return True

    def set_room_lock(self, locked: bool, locked_by: Optional[str] = None, now: Optional[datetime] = None) -> bool:
        """Lock/unlock the whole room. Idempotent; returns True if the state changed."""
        if self._is_locked == locked:
            return False
        self._is_locked = locked
        self._locked_by = locked_by if locked else None
        self._locked_at = (now or utcnow()) if locked else None
        return True

    def update_settings(self, partial: Dict[str, Any]) -> Dict[str, Any]:
        """
        Merge recognised settings; fields not present are left unchanged.

        Returns the settings that actually changed.

        Raises:
            ValidationError: unknown key, non-boolean flag, unparseable deadline
        """
        unknown = sorted(set(partial) - set(SETTING_NAMES))
        if unknown:
            raise ValidationError(f"Unknown room settings: {', '.join(unknown)}")

        staged = asdict(self._settings)
        for name, value in partial.items():
            if name in _BOOLEAN_SETTINGS:
                if not isinstance(value, bool):
                    raise ValidationError(f"Setting {name} must be a boolean")
                staged[name] = value
            else:
                try:
                    staged[name] = parse_timestamp(value)
                except (TypeError, ValueError):
                    raise ValidationError(f"Setting {name} is not a valid timestamp: {value!r}")

        current = asdict(self._settings)
        changed = {k: v for k, v in staged.items() if current[k] != v}
        self._settings = RoomSettings(**staged)
        return changed

    def mark_auto_locked(self, lock_time: datetime, now: Optional[datetime] = None) -> bool:
        """Apply the scheduled Open -> Locked transition for ``lock_time``."""
        self._auto_lock_applied_for = lock_time
        return self.set_room_lock(True, locked_by="scheduler", now=now)

    def archive(self, now: Optional[datetime] = None) -> None:
        if self._archived_at is None:
            self._archived_at = now or utcnow()

    def bump_revision(self) -> int:
        self._revision += 1
        return self._revision

    # ------------------------------------------------------------------
    # Snapshot
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Full room state as plain JSON-able data; what clients render from."""
        return {
            "tournament_id": self._tournament_id,
            "tournament_type": self._tournament_type,
            "max_teams": self._max_teams,
            "max_players_per_team": self._max_players_per_team,
            "revision": self._revision,
            "is_locked": self._is_locked,
            "locked_by": self._locked_by,
            "locked_at": isoformat(self._locked_at),
            "archived": self.is_archived,
            "total_players": self.total_players,
            "settings": {
                "allow_slot_change": self._settings.allow_slot_change,
                "allow_team_switch": self._settings.allow_team_switch,
                "auto_assign_teams": self._settings.auto_assign_teams,
                "slot_change_deadline": isoformat(self._settings.slot_change_deadline),
            },
            "teams": [
                {**team.to_dict(), "is_complete": team.is_complete, "player_count": team.player_count}
                for team in self._teams
            ],
        }
