"""
Admin room routes: the room console for tournament staff.

Every mutation is attributed to the acting administrator (``X-Admin-Id``);
it travels with the broadcast event and lands in the room audit log.
Errors come back with their raw kind and player/slot context.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from gameon.auth import administrator_from_query, get_administrator
from gameon.database import get_session
from gameon.routes.room_slots import stream_room_events
from gameon.services import tournament_directory as directory
from gameon.services.room_access import Administrator
from gameon.services.room_errors import RoomSlotError, status_code_for
from gameon.services.room_slot_service import RoomContext, RoomSlotService, get_room_slot_service, room_stats
from gameon.services.room_views import AdminRoomView, present_admin_error

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin/room-slots")

LockAction = Literal["lock", "unlock"]


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


class MovePlayerRequest(_CamelModel):
    player_id: str = Field(alias="playerId", min_length=1)
    to_team: int = Field(alias="toTeam", ge=1)
    to_slot: int = Field(alias="toSlot", ge=1)


class SwapPlayersRequest(_CamelModel):
    player_a: str = Field(alias="playerA", min_length=1)
    player_b: str = Field(alias="playerB", min_length=1)


class RemovePlayerRequest(_CamelModel):
    player_id: str = Field(alias="playerId", min_length=1)


class ToggleSlotLockRequest(_CamelModel):
    team_number: int = Field(alias="teamNumber", ge=1)
    slot_number: int = Field(alias="slotNumber", ge=1)
    action: LockAction


class ToggleAllSlotsRequest(_CamelModel):
    action: LockAction


class RoomSettingsUpdate(_CamelModel):
    """Only the fields sent are changed; ``slotChangeDeadline: null`` clears the deadline."""

    allow_slot_change: Optional[bool] = Field(default=None, alias="allowSlotChange")
    allow_team_switch: Optional[bool] = Field(default=None, alias="allowTeamSwitch")
    auto_assign_teams: Optional[bool] = Field(default=None, alias="autoAssignTeams")
    slot_change_deadline: Optional[str] = Field(default=None, alias="slotChangeDeadline")


class ReleaseCredentialsRequest(_CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    password: str = Field(min_length=1)
    map: Optional[str] = None
    perspective: Optional[Literal["FPP", "TPP"]] = None


class AdminActionResponse(BaseModel):
    success: bool = True
    message: str
    changed: bool = True
    room: Dict[str, Any]


class AuditLogEntry(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    actor: str
    action: str
    details: Optional[Dict[str, Any]] = None
    revision: int
    created_at: datetime


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(error: RoomSlotError) -> HTTPException:
    return HTTPException(status_code=status_code_for(error), detail=present_admin_error(error))


def _render(session: Session, service: RoomSlotService, ctx: RoomContext) -> Dict[str, Any]:
    return AdminRoomView(
        ctx.store,
        ctx.tournament,
        names=directory.participant_names(session, ctx.tournament.id),
        lock_time=service.lock_time(ctx.tournament, ctx.store),
        stats=room_stats(ctx.store),
    ).render()


def _respond(session: Session, service: RoomSlotService, ctx: RoomContext, message: str, changed: bool = True) -> AdminActionResponse:
    return AdminActionResponse(message=message, changed=changed, room=_render(session, service, ctx))


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/tournament/{tournament_id}")
def get_admin_room_layout(
    tournament_id: int,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    try:
        ctx = service.get_room(session, admin, tournament_id)
    except RoomSlotError as e:
        raise _http_error(e)
    return _render(session, service, ctx)


@router.post("/tournament/{tournament_id}/move-player", response_model=AdminActionResponse)
def move_player(
    tournament_id: int,
    body: MovePlayerRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Move any player to any empty slot; locks and settings are overridden."""
    try:
        ctx = service.move_player(session, admin, tournament_id, body.player_id, body.to_team, body.to_slot)
    except RoomSlotError as e:
        raise _http_error(e)
    moved = ctx.result.moved
    return _respond(session, service, ctx, "Player moved successfully" if moved else "Player is already in this slot", moved)


@router.post("/tournament/{tournament_id}/swap-players", response_model=AdminActionResponse)
def swap_players(
    tournament_id: int,
    body: SwapPlayersRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Exchange the slots of two seated players in one step."""
    try:
        ctx = service.swap_players(session, admin, tournament_id, body.player_a, body.player_b)
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, "Players swapped successfully")


@router.post("/tournament/{tournament_id}/remove-player", response_model=AdminActionResponse)
def remove_player(
    tournament_id: int,
    body: RemovePlayerRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Free a player's slot. Tournament membership is left to the tournament service."""
    try:
        ctx = service.remove_player(session, admin, tournament_id, body.player_id)
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, "Player removed from slot")


@router.post("/tournament/{tournament_id}/toggle-slot-lock", response_model=AdminActionResponse)
def toggle_slot_lock(
    tournament_id: int,
    body: ToggleSlotLockRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    locked = body.action == "lock"
    try:
        ctx = service.set_slot_lock(session, admin, tournament_id, body.team_number, body.slot_number, locked)
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, f"Slot {body.action}ed successfully", changed=ctx.result)


@router.post("/tournament/{tournament_id}/toggle-all-slots", response_model=AdminActionResponse)
def toggle_all_slots(
    tournament_id: int,
    body: ToggleAllSlotsRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Room-wide lock/unlock. Unlocking is the only way back to an open room."""
    locked = body.action == "lock"
    try:
        ctx = service.set_room_lock(session, admin, tournament_id, locked)
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, f"All slots {body.action}ed successfully", changed=ctx.result)


@router.put("/tournament/{tournament_id}/settings", response_model=AdminActionResponse)
def update_room_settings(
    tournament_id: int,
    body: RoomSettingsUpdate,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    partial = body.model_dump(exclude_unset=True)
    try:
        ctx = service.update_settings(session, admin, tournament_id, partial)
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, "Room settings updated successfully", changed=bool(ctx.result))


@router.post("/tournament/{tournament_id}/release-credentials", response_model=AdminActionResponse)
def release_credentials(
    tournament_id: int,
    body: ReleaseCredentialsRequest,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Publish the BGMI room id/password to participants."""
    try:
        ctx = service.release_credentials(
            session,
            admin,
            tournament_id,
            body.room_id,
            body.password,
            room_map=body.map,
            perspective=body.perspective,
        )
    except RoomSlotError as e:
        raise _http_error(e)
    return _respond(session, service, ctx, "Room credentials released")


@router.get("/tournament/{tournament_id}/stats")
def get_room_stats(
    tournament_id: int,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    try:
        ctx = service.get_room(session, admin, tournament_id)
    except RoomSlotError as e:
        raise _http_error(e)
    return room_stats(ctx.store)


@router.get("/tournament/{tournament_id}/audit", response_model=List[AuditLogEntry])
def get_room_audit_log(
    tournament_id: int,
    admin: Administrator = Depends(get_administrator),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    try:
        return service.audit_log(session, admin, tournament_id)
    except RoomSlotError as e:
        raise _http_error(e)


@router.websocket("/tournament/{tournament_id}/ws")
async def admin_room_updates(
    websocket: WebSocket,
    tournament_id: int,
    admin_id: Optional[str] = None,
    scopes: Optional[str] = None,
    service: RoomSlotService = Depends(get_room_slot_service),
):
    admin = administrator_from_query(admin_id, scopes)
    if admin is None:
        await websocket.close(code=4401)
        return
    await stream_room_events(websocket, service, tournament_id, admin)
