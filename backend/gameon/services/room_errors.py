"""
Room slot errors.

Every failure the room subsystem reports to a caller is a ``RoomSlotError``
with a stable ``kind`` string. Routes map the kind to an HTTP status and a
user-facing message; nothing is ever left half-applied when one is raised.
"""

from typing import Any, Dict, Optional


class RoomSlotError(Exception):
    """Base exception for room slot errors"""

    kind = "RoomSlotError"

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, **self.context}


class NotFound(RoomSlotError):
    """Tournament, room, team, slot or participant does not exist"""

    kind = "NotFound"


class Forbidden(RoomSlotError):
    """Actor lacks permission for the requested operation"""

    kind = "Forbidden"


class RoomLocked(RoomSlotError):
    kind = "RoomLocked"


class SlotLocked(RoomSlotError):
    kind = "SlotLocked"


class SlotOccupied(RoomSlotError):
    kind = "SlotOccupied"


class ChangeNotAllowed(RoomSlotError):
    kind = "ChangeNotAllowed"


class TeamSwitchNotAllowed(RoomSlotError):
    kind = "TeamSwitchNotAllowed"


class Full(RoomSlotError):
    """No free, unlocked slot left in the room"""

    kind = "Full"


class ValidationError(RoomSlotError):
    """Malformed input, e.g. team/slot number outside the configured range"""

    kind = "ValidationError"


class ConcurrentUpdate(RoomSlotError):
    """The stored room changed after it was loaded (another worker committed first)"""

    kind = "ConcurrentUpdate"


ERROR_STATUS_CODES = {
    NotFound.kind: 404,
    Forbidden.kind: 403,
    RoomLocked.kind: 409,
    SlotLocked.kind: 409,
    SlotOccupied.kind: 409,
    ChangeNotAllowed.kind: 409,
    TeamSwitchNotAllowed.kind: 409,
    Full.kind: 409,
    ValidationError.kind: 422,
    ConcurrentUpdate.kind: 409,
}


def status_code_for(error: RoomSlotError, default: Optional[int] = 400) -> int:
    return ERROR_STATUS_CODES.get(error.kind, default)
