"""Read access to tournaments and their participants for the room subsystem."""

from datetime import datetime
from typing import Dict, List, Optional

from sqlmodel import Session, select

from gameon.models.tournament import Tournament
from gameon.models.tournament_participant import TournamentParticipant
from gameon.services.room_errors import NotFound


def get_tournament(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise NotFound(f"Tournament {tournament_id} not found", tournament_id=tournament_id)
    return tournament


def get_participant(session: Session, tournament_id: int, user_id: str) -> Optional[TournamentParticipant]:
    return session.exec(
        select(TournamentParticipant).where(
            TournamentParticipant.tournament_id == tournament_id,
            TournamentParticipant.user_id == user_id,
        )
    ).first()


def is_participant(session: Session, tournament_id: int, user_id: str) -> bool:
    return get_participant(session, tournament_id, user_id) is not None


def list_participants(session: Session, tournament_id: int) -> List[TournamentParticipant]:
    """Participants in join order."""
    return list(
        session.exec(
            select(TournamentParticipant)
            .where(TournamentParticipant.tournament_id == tournament_id)
            .order_by(TournamentParticipant.joined_at, TournamentParticipant.id)
        ).all()
    )


def participant_names(session: Session, tournament_id: int) -> Dict[str, str]:
    """user_id -> display name (falls back to the user id)."""
    return {p.user_id: p.display_name or p.user_id for p in list_participants(session, tournament_id)}


def release_room_credentials(
    session: Session,
    tournament: Tournament,
    room_id: str,
    password: str,
    room_map: Optional[str] = None,
    perspective: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Tournament:
    """Store the BGMI room id/password on the tournament and mark them visible to players."""
    tournament.room_id = room_id
    tournament.room_password = password
    if room_map is not None:
        tournament.room_map = room_map
    if perspective is not None:
        tournament.room_perspective = perspective
    tournament.credentials_released = True
    tournament.credentials_released_at = now or datetime.utcnow()
    session.add(tournament)
    return tournament
