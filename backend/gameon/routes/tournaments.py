"""
Tournament endpoints used by the room subsystem.

Tournament CRUD, payments and the full join flow belong to the tournament
service; these routes carry only what the room needs from it: creating a
tournament, changing its start date or status, and registering a paid
participant (which seats them when the room auto-assigns).
"""

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlmodel import Session, select

from gameon.database import get_session
from gameon.models.tournament import OPEN_STATUSES, Tournament
from gameon.models.tournament_participant import TournamentParticipant
from gameon.services import tournament_directory as directory
from gameon.services.room_errors import Full, RoomSlotError, status_code_for
from gameon.services.room_slot_service import RoomSlotService, get_room_slot_service
from gameon.utils.timestamps import to_naive_utc

logger = logging.getLogger(__name__)

router = APIRouter()

TournamentType = Literal["solo", "duo", "squad"]
TournamentStatus = Literal["upcoming", "live", "completed", "cancelled"]


class TournamentCreate(BaseModel):
    title: str = Field(min_length=1)
    tournament_type: TournamentType = "squad"
    start_date: datetime
    max_participants: int = Field(default=100, ge=1)
    status: TournamentStatus = "upcoming"

    @field_validator("start_date")
    @classmethod
    def normalize_start_date(cls, v):
        return to_naive_utc(v)


class TournamentUpdate(BaseModel):
    title: Optional[str] = None
    start_date: Optional[datetime] = None
    status: Optional[TournamentStatus] = None

    @field_validator("start_date")
    @classmethod
    def normalize_start_date(cls, v):
        return to_naive_utc(v) if v is not None else None


class TournamentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    title: str
    tournament_type: str
    status: str
    start_date: datetime
    max_participants: int
    current_participants: int
    credentials_released: bool
    created_at: datetime
    updated_at: datetime


class JoinRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(alias="userId", min_length=1)
    display_name: Optional[str] = Field(default=None, alias="displayName")


class JoinResponse(BaseModel):
    tournament_id: int
    user_id: str
    team_number: Optional[int] = None
    slot_number: Optional[int] = None


def _get_tournament_or_404(session: Session, tournament_id: int) -> Tournament:
    tournament = session.get(Tournament, tournament_id)
    if not tournament:
        raise HTTPException(status_code=404, detail="Tournament not found")
    return tournament


@router.get("/tournaments", response_model=List[TournamentResponse])
def list_tournaments(session: Session = Depends(get_session)):
    """List all tournaments"""
    return session.exec(select(Tournament).order_by(Tournament.start_date)).all()


@router.post("/tournaments", response_model=TournamentResponse, status_code=201)
def create_tournament(tournament_data: TournamentCreate, session: Session = Depends(get_session)):
    tournament = Tournament(**tournament_data.model_dump())
    session.add(tournament)
    session.commit()
    session.refresh(tournament)
    return tournament


@router.get("/tournaments/{tournament_id}", response_model=TournamentResponse)
def get_tournament(tournament_id: int, session: Session = Depends(get_session)):
    return _get_tournament_or_404(session, tournament_id)


@router.patch("/tournaments/{tournament_id}", response_model=TournamentResponse)
def update_tournament(
    tournament_id: int,
    tournament_data: TournamentUpdate,
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Update a tournament; a new start date reschedules the room lock, a final status archives the room."""
    tournament = _get_tournament_or_404(session, tournament_id)

    update_data = tournament_data.model_dump(exclude_unset=True)
    room_relevant = any(
        key in update_data and update_data[key] != getattr(tournament, key) for key in ("start_date", "status")
    )
    for key, value in update_data.items():
        setattr(tournament, key, value)
    session.add(tournament)
    session.commit()
    session.refresh(tournament)

    if room_relevant:
        service.tournament_updated(session, tournament)
    return tournament


@router.post("/tournaments/{tournament_id}/participants", response_model=JoinResponse, status_code=201)
def join_tournament(
    tournament_id: int,
    body: JoinRequest,
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """
    Register a participant whose entry fee is already settled.

    When the room auto-assigns teams the player is seated immediately;
    a full room fails the join.
    """
    tournament = _get_tournament_or_404(session, tournament_id)
    if tournament.status not in OPEN_STATUSES:
        raise HTTPException(status_code=409, detail=f"Tournament is {tournament.status}")
    if directory.is_participant(session, tournament_id, body.user_id):
        raise HTTPException(status_code=409, detail="Already joined this tournament")
    if tournament.current_participants >= tournament.max_participants:
        raise HTTPException(status_code=409, detail={"kind": Full.kind, "message": "Tournament is full"})

    participant = TournamentParticipant(
        tournament_id=tournament_id,
        user_id=body.user_id,
        display_name=body.display_name,
    )
    tournament.current_participants += 1
    session.add(participant)
    session.add(tournament)
    session.flush()

    try:
        location = service.register_participant(session, tournament, body.user_id, body.display_name)
    except RoomSlotError as e:
        # The room may have been created (and committed) on the way; undo the membership explicitly
        session.rollback()
        leftover = directory.get_participant(session, tournament_id, body.user_id)
        if leftover is not None:
            session.delete(leftover)
            tournament = session.get(Tournament, tournament_id)
            tournament.current_participants = max(0, tournament.current_participants - 1)
            session.add(tournament)
        session.commit()
        logger.warning("Join of %s to tournament %d rejected: %s", body.user_id, tournament_id, e.message)
        raise HTTPException(status_code=status_code_for(e), detail=e.to_dict())

    session.commit()
    return JoinResponse(
        tournament_id=tournament_id,
        user_id=body.user_id,
        team_number=location[0] if location else None,
        slot_number=location[1] if location else None,
    )
