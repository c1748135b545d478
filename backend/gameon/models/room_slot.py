"""Persisted room layout: one row per tournament.

Teams and their slots are kept as a nested JSON document in ``teams``; the
room-wide lock, settings and bookkeeping counters are plain columns.
All reads and writes go through ``gameon.services.room_slot_store``.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class RoomSlot(SQLModel, table=True):
    __tablename__ = "room_slot"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", unique=True, index=True)
    tournament_type: str = Field(max_length=10)
    max_teams: int
    max_players_per_team: int
    teams: List[Dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))

    # Room-wide lock
    is_locked: bool = Field(default=False)
    locked_by: Optional[str] = None  # admin id, or "scheduler"
    locked_at: Optional[datetime] = None

    # Settings
    allow_slot_change: bool = Field(default=True)
    allow_team_switch: bool = Field(default=True)
    auto_assign_teams: bool = Field(default=True)
    slot_change_deadline: Optional[datetime] = None

    revision: int = Field(default=0)  # bumped on every committed mutation
    auto_lock_applied_for: Optional[datetime] = None  # last lock time applied by the scheduler
    archived_at: Optional[datetime] = None

    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow, sa_column_kwargs={"onupdate": datetime.utcnow})
