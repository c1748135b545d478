from datetime import datetime
from typing import TYPE_CHECKING, List, Optional

from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from gameon.models.tournament_participant import TournamentParticipant

# Statuses in which the room accepts players
OPEN_STATUSES = ("upcoming", "live")


class Tournament(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    title: str
    tournament_type: str = Field(default="squad", max_length=10)  # solo|duo|squad
    status: str = Field(default="upcoming", max_length=12, index=True)
    start_date: datetime  # UTC
    max_participants: int = Field(default=100)
    current_participants: int = Field(default=0)

    # Room credentials, set by an admin and shown to participants once released
    room_id: Optional[str] = None
    room_password: Optional[str] = None
    room_map: Optional[str] = None
    room_perspective: str = Field(default="TPP", max_length=3)  # FPP|TPP
    credentials_released: bool = Field(default=False)
    credentials_released_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})

    # Relationships
    participants: List["TournamentParticipant"] = Relationship(back_populates="tournament")
