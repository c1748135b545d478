"""
Room access rules: who may read or change a room.

Two kinds of actor reach the room subsystem, both already authenticated
upstream:

- ``Participant``: a player of the tournament. May view the room and move
  only themselves; always subject to lock and settings checks.
- ``Administrator``: staff with the room permission scope. May move any
  player, lock/unlock slots and the room, edit settings. Bypasses locks and
  settings but never overwrites an occupied slot.
"""

import os
from dataclasses import dataclass, field
from typing import ClassVar, FrozenSet, Union

from gameon.services.room_errors import Forbidden

ADMIN_ROOM_SCOPE = os.getenv("ADMIN_ROOM_SCOPE", "room_slots")
WILDCARD_SCOPE = "*"

# Actor label recorded for automatic (timer-driven) transitions
SCHEDULER_ACTOR = "scheduler"


@dataclass(frozen=True)
class Participant:
    user_id: str

    is_admin: ClassVar[bool] = False

    @property
    def identity(self) -> str:
        return self.user_id


@dataclass(frozen=True)
class Administrator:
    admin_id: str
    scopes: FrozenSet[str] = field(default_factory=frozenset)

    is_admin: ClassVar[bool] = True

    @property
    def identity(self) -> str:
        return self.admin_id


Actor = Union[Participant, Administrator]


class RoomAccessGateway:
    def __init__(self, admin_scope: str = ADMIN_ROOM_SCOPE):
        self.admin_scope = admin_scope

    def has_admin_scope(self, actor: Actor) -> bool:
        if not isinstance(actor, Administrator):
            return False
        return self.admin_scope in actor.scopes or WILDCARD_SCOPE in actor.scopes

    def is_override(self, actor: Actor) -> bool:
        """Admin actions skip lock and settings checks."""
        return self.has_admin_scope(actor)

    def require_admin(self, actor: Actor, action: str) -> Administrator:
        if not isinstance(actor, Administrator):
            raise Forbidden(f"Only administrators can {action}")
        if not self.has_admin_scope(actor):
            raise Forbidden(
                f"Permission required: {self.admin_scope}",
                admin_id=actor.admin_id,
            )
        return actor

    def authorize_view(self, actor: Actor, is_member: bool) -> None:
        """Participants must belong to the tournament; admins need the scope."""
        if isinstance(actor, Administrator):
            self.require_admin(actor, "view the admin room layout")
            return
        if not is_member:
            raise Forbidden("You are not a participant in this tournament", user_id=actor.user_id)

    def authorize_move(self, actor: Actor, player_id: str) -> None:
        if isinstance(actor, Administrator):
            self.require_admin(actor, "move players")
            return
        if actor.user_id != player_id:
            raise Forbidden("You can only move your own slot", user_id=actor.user_id, player_id=player_id)
