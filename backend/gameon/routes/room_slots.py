"""
Participant room routes: lobby snapshot, self moves, auto-assign, live updates.

Provides endpoints for:
- Viewing the room grid (only for participants of the tournament)
- Moving yourself by tap or drag-and-drop
- Requesting a seat after joining
- Listing free slots
- A WebSocket stream of room events
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel, ConfigDict, Field
from sqlmodel import Session

from gameon.auth import get_participant
from gameon.database import get_session
from gameon.services import room_broadcast as events
from gameon.services import tournament_directory as directory
from gameon.services.room_access import Actor, Participant
from gameon.services.room_errors import RoomSlotError, status_code_for
from gameon.services.room_slot_service import RoomContext, RoomSlotService, get_room_slot_service
from gameon.services.room_views import GESTURE_TAP, ParticipantRoomView, present_participant_error, translate_gesture

logger = logging.getLogger(__name__)

router = APIRouter()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class MoveSelfRequest(BaseModel):
    """Tap: only the target. Drag: target plus the slot the player dragged from."""

    model_config = ConfigDict(populate_by_name=True)

    to_team: int = Field(alias="toTeam", ge=1)
    to_slot: int = Field(alias="toSlot", ge=1)
    from_team: Optional[int] = Field(default=None, alias="fromTeam")
    from_slot: Optional[int] = Field(default=None, alias="fromSlot")
    gesture: str = GESTURE_TAP


class RoomActionResponse(BaseModel):
    success: bool = True
    message: str
    moved: bool = False
    room: Dict[str, Any]


class AvailableSlot(BaseModel):
    team_number: int
    slot_number: int


class AvailableSlotsResponse(BaseModel):
    available_slots: List[AvailableSlot]
    total_available: int
    total_slots: int
    total_players: int


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _http_error(error: RoomSlotError) -> HTTPException:
    return HTTPException(status_code=status_code_for(error), detail=present_participant_error(error))


def _render(session: Session, service: RoomSlotService, ctx: RoomContext, user_id: str) -> Dict[str, Any]:
    return ParticipantRoomView(
        ctx.store,
        ctx.tournament,
        user_id,
        names=directory.participant_names(session, ctx.tournament.id),
        lock_time=service.lock_time(ctx.tournament, ctx.store),
    ).render()


async def stream_room_events(websocket: WebSocket, service: RoomSlotService, tournament_id: int, actor: Actor) -> None:
    """
    Forward room events to one WebSocket.

    Subscribes before loading the initial snapshot so nothing committed in
    between is lost; queued events not newer than the snapshot are dropped.
    """
    loop = asyncio.get_running_loop()
    queue: asyncio.Queue = asyncio.Queue()
    subscription = service.subscribe(tournament_id, lambda event: loop.call_soon_threadsafe(queue.put_nowait, event))

    def load_snapshot() -> Dict[str, Any]:
        with service.session_factory() as session:
            ctx = service.get_room(session, actor, tournament_id)
            return events.build_event(events.ROOM_SNAPSHOT, tournament_id, ctx.store.snapshot(), actor=actor.identity)

    try:
        initial = await run_in_threadpool(load_snapshot)
    except RoomSlotError as e:
        subscription.close()
        await websocket.close(code=4000 + status_code_for(e))
        return
    except BaseException:
        subscription.close()
        raise

    await websocket.accept()
    last_sequence = initial["sequence"]

    async def forward() -> None:
        nonlocal last_sequence
        await websocket.send_json(initial)
        while True:
            event = await queue.get()
            if event.get("sequence") is not None and event["sequence"] <= last_sequence:
                continue
            last_sequence = event["sequence"]
            await websocket.send_json(event)

    async def drain() -> None:
        # Clients only listen; reading detects the disconnect
        while True:
            await websocket.receive_text()

    tasks = [asyncio.ensure_future(forward()), asyncio.ensure_future(drain())]
    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            exc = task.exception()
            if exc is not None and not isinstance(exc, WebSocketDisconnect):
                raise exc
    finally:
        subscription.close()
        logger.info("Room stream closed for %s on tournament %d", actor.identity, tournament_id)


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


@router.get("/room-slots/tournament/{tournament_id}")
def get_room_layout(
    tournament_id: int,
    participant: Participant = Depends(get_participant),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Room grid for the lobby, from the caller's point of view."""
    try:
        ctx = service.get_room(session, participant, tournament_id)
    except RoomSlotError as e:
        raise _http_error(e)
    return _render(session, service, ctx, participant.user_id)


@router.post("/room-slots/tournament/{tournament_id}/move", response_model=RoomActionResponse)
def move_self(
    tournament_id: int,
    body: MoveSelfRequest,
    participant: Participant = Depends(get_participant),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Move the caller to another slot (tap or drag-and-drop)."""
    logger.info(
        "Player slot move request: tournament=%d player=%s to team %d slot %d (%s)",
        tournament_id,
        participant.user_id,
        body.to_team,
        body.to_slot,
        body.gesture,
    )
    try:
        request = translate_gesture(
            participant.user_id,
            body.to_team,
            body.to_slot,
            gesture=body.gesture,
            from_team=body.from_team,
            from_slot=body.from_slot,
        )
        ctx = service.move_player(
            session,
            participant,
            tournament_id,
            request.player_id,
            request.to_team,
            request.to_slot,
            expected_from=request.expected_from,
        )
    except RoomSlotError as e:
        raise _http_error(e)

    return RoomActionResponse(
        message="Slot changed successfully" if ctx.result.moved else "You are already in this slot",
        moved=ctx.result.moved,
        room=_render(session, service, ctx, participant.user_id),
    )


@router.post("/room-slots/tournament/{tournament_id}/assign", response_model=RoomActionResponse)
def assign_self(
    tournament_id: int,
    participant: Participant = Depends(get_participant),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    """Seat the caller in the first free slot (after paying/joining)."""
    try:
        ctx = service.auto_assign_player(session, tournament_id, participant.user_id, actor=participant)
    except RoomSlotError as e:
        raise _http_error(e)

    return RoomActionResponse(
        message="Player assigned to slot successfully" if ctx.result.moved else "Player already assigned to slot",
        moved=ctx.result.moved,
        room=_render(session, service, ctx, participant.user_id),
    )


@router.get("/room-slots/tournament/{tournament_id}/available", response_model=AvailableSlotsResponse)
def get_available_slots(
    tournament_id: int,
    participant: Participant = Depends(get_participant),
    session: Session = Depends(get_session),
    service: RoomSlotService = Depends(get_room_slot_service),
):
    try:
        ctx = service.get_room(session, participant, tournament_id)
    except RoomSlotError as e:
        raise _http_error(e)

    available = ctx.store.available_slots()
    return AvailableSlotsResponse(
        available_slots=[AvailableSlot(team_number=t, slot_number=s) for t, s in available],
        total_available=len(available),
        total_slots=ctx.store.capacity,
        total_players=ctx.store.total_players,
    )


@router.websocket("/room-slots/tournament/{tournament_id}/ws")
async def room_updates(
    websocket: WebSocket,
    tournament_id: int,
    user_id: Optional[str] = None,
    service: RoomSlotService = Depends(get_room_slot_service),
):
    if not user_id:
        await websocket.close(code=4401)
        return
    await stream_room_events(websocket, service, tournament_id, Participant(user_id=user_id))
