from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import UniqueConstraint as SAUniqueConstraint
from sqlmodel import Field, Relationship, SQLModel

if TYPE_CHECKING:
    from gameon.models.tournament import Tournament


class TournamentParticipant(SQLModel, table=True):
    __tablename__ = "tournament_participant"
    __table_args__ = (
        SAUniqueConstraint("tournament_id", "user_id", name="uq_participant_tournament_user"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    user_id: str = Field(index=True, max_length=64)
    display_name: Optional[str] = None  # BGMI in-game name
    joined_at: datetime = Field(default_factory=datetime.utcnow)

    # Relationships
    tournament: "Tournament" = Relationship(back_populates="participants")
