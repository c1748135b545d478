"""Audit trail of administrator actions on a room."""

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel


class RoomAuditLog(SQLModel, table=True):
    """One row per admin (or scheduler) mutation of a room."""

    __tablename__ = "room_audit_log"

    id: Optional[int] = Field(default=None, primary_key=True)
    tournament_id: int = Field(foreign_key="tournament.id", index=True)
    actor: str  # admin id, or "scheduler"
    action: str  # event name: playerMoved|slotLocked|slotsLocked|settingsUpdated|...
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    revision: int  # room revision produced by this action
    created_at: datetime = Field(default_factory=datetime.utcnow)
