# Force SQLModel table registration at test discovery time
# This ensures all models are registered before any test database creation
from gameon.models.room_audit_log import RoomAuditLog  # noqa: F401
from gameon.models.room_slot import RoomSlot  # noqa: F401
from gameon.models.tournament import Tournament  # noqa: F401
from gameon.models.tournament_participant import TournamentParticipant  # noqa: F401
