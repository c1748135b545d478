from gameon.models.room_audit_log import RoomAuditLog
from gameon.models.room_slot import RoomSlot
from gameon.models.tournament import Tournament
from gameon.models.tournament_participant import TournamentParticipant

__all__ = [
    "Tournament",
    "TournamentParticipant",
    "RoomSlot",
    "RoomAuditLog",
]
