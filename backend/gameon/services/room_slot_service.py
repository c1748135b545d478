"""
Room Slot Service: the single writer for tournament rooms.

Routes and the lock scheduler go through this service. Each mutation runs
under the tournament's writer lock for the whole load -> check -> mutate ->
commit -> publish sequence, so requests for one room are strictly serialized
and subscribers see events in the order they were committed. Rooms of
different tournaments never block each other.

A failed check raises before anything is persisted. A failed broadcast is
logged and never rolls back a committed change; clients re-sync from the
next snapshot.
"""

import logging
import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

from sqlalchemy import update
from sqlmodel import Session, select

from gameon.database import engine
from gameon.models.room_audit_log import RoomAuditLog
from gameon.models.room_slot import RoomSlot
from gameon.models.tournament import OPEN_STATUSES, Tournament
from gameon.services import room_broadcast as events
from gameon.services import tournament_directory as directory
from gameon.services.lock_scheduler import LockTransitionScheduler, TimerFactory, is_lock_due, thread_timer
from gameon.services.room_access import SCHEDULER_ACTOR, Actor, Administrator, Participant, RoomAccessGateway
from gameon.services.room_broadcast import BroadcastChannel, InProcessBroadcastChannel, Subscriber, Subscription
from gameon.services.room_errors import ConcurrentUpdate, Forbidden, Full, NotFound
from gameon.services.room_slot_store import Location, RoomSlotStore
from gameon.services.slot_assignment_engine import SlotAssignmentEngine
from gameon.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

SCHEDULER_ENABLED = os.getenv("ROOM_SCHEDULER_ENABLED", "true").lower() in ("true", "1", "yes")


class RoomWriterLocks:
    """One exclusive lock per tournament id."""

    def __init__(self):
        self._locks: Dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def for_room(self, tournament_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(tournament_id)
            if lock is None:
                lock = self._locks[tournament_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(self, tournament_id: int) -> Iterator[None]:
        with self.for_room(tournament_id):
            yield


@dataclass
class RoomContext:
    """What a caller gets back: the tournament and the room after the operation."""

    tournament: Tournament
    store: RoomSlotStore
    result: Any = None


class RoomSlotService:
    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        broadcaster: Optional[BroadcastChannel] = None,
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = thread_timer,
        gateway: Optional[RoomAccessGateway] = None,
        scheduler_enabled: bool = SCHEDULER_ENABLED,
    ):
        self.session_factory = session_factory or (lambda: Session(engine))
        self.clock = clock
        self.gateway = gateway or RoomAccessGateway()
        self.engine = SlotAssignmentEngine(self.gateway, clock)
        self.broadcaster = broadcaster or InProcessBroadcastChannel()
        self.scheduler = LockTransitionScheduler(self._on_lock_due, clock=clock, timer_factory=timer_factory)
        self.scheduler_enabled = scheduler_enabled
        self.writer_locks = RoomWriterLocks()

    # ------------------------------------------------------------------
    # Loading / persistence (callers hold the writer lock)
    # ------------------------------------------------------------------

    def _load_record(self, session: Session, tournament_id: int) -> Optional[RoomSlot]:
        return session.exec(select(RoomSlot).where(RoomSlot.tournament_id == tournament_id)).first()

    def _ensure_room(self, session: Session, tournament: Tournament) -> Tuple[RoomSlot, RoomSlotStore]:
        """Load the room, creating it (and seating existing participants) on first use."""
        record = self._load_record(session, tournament.id)
        if record is not None:
            return record, RoomSlotStore.from_record(record)

        if tournament.status not in OPEN_STATUSES:
            raise NotFound(
                f"Tournament {tournament.id} is {tournament.status}; no room available",
                tournament_id=tournament.id,
            )

        store = RoomSlotStore.create(tournament.id, tournament.tournament_type, tournament.max_participants)
        for participant in directory.list_participants(session, tournament.id):
            try:
                self.engine.auto_assign(store, participant.user_id)
            except Full as e:
                logger.warning("Could not auto-assign player %s: %s", participant.user_id, e.message)
        record = store.to_record()
        session.add(record)
        session.commit()
        session.refresh(record)
        logger.info(
            "Created room for tournament %d: %d teams x %d slots, %d players seated",
            tournament.id,
            store.max_teams,
            store.max_players_per_team,
            store.total_players,
        )
        self._schedule(tournament, store)
        return record, store

    def _commit(
        self,
        session: Session,
        record: RoomSlot,
        store: RoomSlotStore,
        event: str,
        actor: Optional[str],
        details: Optional[Dict[str, Any]] = None,
        audit: bool = False,
        audit_details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._claim_revision(session, record)
        revision = store.bump_revision()
        store.to_record(record)
        session.add(record)
        if audit:
            session.add(
                RoomAuditLog(
                    tournament_id=store.tournament_id,
                    actor=actor or SCHEDULER_ACTOR,
                    action=event,
                    details=details if audit_details is None else audit_details,
                    revision=revision,
                    created_at=self.clock(),
                )
            )
        session.commit()
        self._publish(store, event, actor, details)

    def _claim_revision(self, session: Session, record: RoomSlot) -> None:
        """
        Compare-and-set on ``revision`` before writing the room.

        The writer lock only covers this process; a second worker that
        committed since ``record`` was loaded makes the update match no row.
        """
        tournament_id, expected = record.tournament_id, record.revision
        result = session.execute(
            update(RoomSlot)
            .where(RoomSlot.id == record.id, RoomSlot.revision == expected)
            .values(revision=expected + 1)
        )
        if result.rowcount != 1:
            session.rollback()
            logger.warning("Room for tournament %d changed under revision %d; write refused", tournament_id, expected)
            raise ConcurrentUpdate(
                "Room was changed by another request, reload and retry",
                tournament_id=tournament_id,
                revision=expected,
            )

    def _publish(self, store: RoomSlotStore, event: str, actor: Optional[str], details: Optional[Dict[str, Any]]) -> None:
        payload = events.build_event(event, store.tournament_id, store.snapshot(), actor=actor, details=details)
        try:
            self.broadcaster.publish(store.tournament_id, payload)
        except Exception:
            logger.exception("Broadcast of %s failed for tournament %d", event, store.tournament_id)

    @contextmanager
    def _room(self, session: Session, tournament_id: int, mutating: bool = True) -> Iterator[Tuple[Tournament, RoomSlot, RoomSlotStore]]:
        """Writer-locked access to a room with the lock deadline already enforced."""
        with self.writer_locks.hold(tournament_id):
            tournament = directory.get_tournament(session, tournament_id)
            record, store = self._ensure_room(session, tournament)
            if mutating and store.is_archived:
                raise NotFound(f"Room for tournament {tournament_id} is archived", tournament_id=tournament_id)
            if not store.is_archived:
                self._enforce_deadline(session, tournament, record, store)
            yield tournament, record, store

    def _enforce_deadline(self, session: Session, tournament: Tournament, record: RoomSlot, store: RoomSlotStore) -> None:
        """Apply a lock deadline that has passed but whose timer has not fired (or cannot, e.g. after a restart)."""
        lock_time = self.scheduler.lock_time_for(tournament.start_date, store.settings.slot_change_deadline)
        if not is_lock_due(self.clock(), lock_time, store.auto_lock_applied_for):
            return
        self.scheduler.cancel(tournament.id)
        self._apply_auto_lock(session, record, store, lock_time)

    def _apply_auto_lock(self, session: Session, record: RoomSlot, store: RoomSlotStore, lock_time: datetime) -> None:
        changed = store.mark_auto_locked(lock_time, now=self.clock())
        if changed:
            logger.info("Room for tournament %d locked by scheduler (lock time %s)", store.tournament_id, lock_time.isoformat())
            self._commit(
                session,
                record,
                store,
                events.SLOTS_LOCKED,
                SCHEDULER_ACTOR,
                {"action": "lock", "lock_time": lock_time.isoformat()},
                audit=True,
            )
        else:
            # Already locked by an admin; only remember the deadline was applied
            store.to_record(record)
            session.add(record)
            session.commit()

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------

    def _schedule(self, tournament: Tournament, store: RoomSlotStore) -> Optional[datetime]:
        if not self.scheduler_enabled or store.is_archived or tournament.status not in OPEN_STATUSES:
            self.scheduler.cancel(tournament.id)
            return None
        return self.scheduler.schedule(
            tournament.id,
            tournament.start_date,
            store.settings.slot_change_deadline,
            applied_for=store.auto_lock_applied_for,
        )

    def _on_lock_due(self, tournament_id: int, fire_at: datetime) -> None:
        with self.session_factory() as session:
            with self.writer_locks.hold(tournament_id):
                record = self._load_record(session, tournament_id)
                tournament = session.get(Tournament, tournament_id)
                if record is None or tournament is None:
                    return
                store = RoomSlotStore.from_record(record)
                if store.is_archived:
                    return
                lock_time = self.scheduler.lock_time_for(tournament.start_date, store.settings.slot_change_deadline)
                if lock_time != fire_at:
                    # Start date or deadline moved after this timer was armed
                    self._schedule(tournament, store)
                    return
                if is_lock_due(self.clock(), lock_time, store.auto_lock_applied_for):
                    self._apply_auto_lock(session, record, store, lock_time)

    def resume_schedules(self) -> int:
        """Re-arm lock timers for every active room (application startup)."""
        count = 0
        with self.session_factory() as session:
            for record in session.exec(select(RoomSlot).where(RoomSlot.archived_at.is_(None))).all():  # type: ignore
                tournament = session.get(Tournament, record.tournament_id)
                if tournament is None:
                    continue
                if self._schedule(tournament, RoomSlotStore.from_record(record)) is not None:
                    count += 1
        logger.info("Resumed %d room lock timers", count)
        return count

    def lock_time(self, tournament: Tournament, store: RoomSlotStore) -> Optional[datetime]:
        return self.scheduler.lock_time_for(tournament.start_date, store.settings.slot_change_deadline)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_room(self, session: Session, actor: Actor, tournament_id: int) -> RoomContext:
        directory.get_tournament(session, tournament_id)
        self._authorize_member(session, actor, tournament_id)
        with self._room(session, tournament_id, mutating=False) as (tournament, _record, store):
            return RoomContext(tournament, store)

    def audit_log(self, session: Session, actor: Actor, tournament_id: int) -> List[RoomAuditLog]:
        self.gateway.require_admin(actor, "view the room audit log")
        directory.get_tournament(session, tournament_id)
        return list(
            session.exec(
                select(RoomAuditLog)
                .where(RoomAuditLog.tournament_id == tournament_id)
                .order_by(RoomAuditLog.revision, RoomAuditLog.id)
            ).all()
        )

    def _authorize_member(self, session: Session, actor: Actor, tournament_id: int) -> None:
        is_member = isinstance(actor, Participant) and directory.is_participant(session, tournament_id, actor.user_id)
        self.gateway.authorize_view(actor, is_member)

    def _require_participant_player(self, session: Session, tournament_id: int, player_id: str) -> None:
        if not directory.is_participant(session, tournament_id, player_id):
            raise NotFound(f"Player {player_id} is not a participant in this tournament", player_id=player_id)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def move_player(
        self,
        session: Session,
        actor: Actor,
        tournament_id: int,
        player_id: str,
        to_team: int,
        to_slot: int,
        expected_from: Optional[Location] = None,
    ) -> RoomContext:
        if isinstance(actor, Administrator):
            self.gateway.require_admin(actor, "move players")
        else:
            self._authorize_member(session, actor, tournament_id)
        with self._room(session, tournament_id) as (tournament, record, store):
            self._require_participant_player(session, tournament_id, player_id)
            if expected_from is not None and store.find_slot_for_player(player_id) != tuple(expected_from):
                raise Forbidden(
                    f"Team {expected_from[0]} slot {expected_from[1]} is not your slot",
                    team=expected_from[0],
                    slot=expected_from[1],
                )
            result = self.engine.request_move(store, actor, player_id, to_team, to_slot)
            if result.moved:
                self._commit(
                    session,
                    record,
                    store,
                    events.PLAYER_MOVED,
                    actor.identity,
                    {**result.to_dict(), "admin_action": actor.is_admin},
                    audit=actor.is_admin,
                )
                if actor.is_admin:
                    logger.info(
                        "Admin %s moved player %s to team %d slot %d in tournament %d",
                        actor.identity,
                        player_id,
                        to_team,
                        to_slot,
                        tournament_id,
                    )
            return RoomContext(tournament, store, result)

    def auto_assign_player(
        self,
        session: Session,
        tournament_id: int,
        player_id: str,
        actor: Optional[Actor] = None,
    ) -> RoomContext:
        """
        Seat a participant in the first free slot.

        ``actor`` is the participant asking for themselves, or None when the
        join flow triggers the placement.
        """
        if actor is not None:
            self._authorize_member(session, actor, tournament_id)
            self.gateway.authorize_move(actor, player_id)
        with self._room(session, tournament_id) as (tournament, record, store):
            self._require_participant_player(session, tournament_id, player_id)
            result = self.engine.auto_assign(store, player_id)
            if result.moved:
                self._commit(
                    session,
                    record,
                    store,
                    events.PLAYER_ASSIGNED,
                    actor.identity if actor else player_id,
                    {
                        "player_id": player_id,
                        "team_number": result.to_location[0],
                        "slot_number": result.to_location[1],
                    },
                )
            return RoomContext(tournament, store, result)

    def swap_players(self, session: Session, actor: Actor, tournament_id: int, player_a: str, player_b: str) -> RoomContext:
        self.gateway.require_admin(actor, "swap players")
        with self._room(session, tournament_id) as (tournament, record, store):
            loc_a, loc_b = self.engine.swap_players(store, actor, player_a, player_b)
            details = {
                "player_a": player_a,
                "player_b": player_b,
                "player_a_to": list(loc_b),
                "player_b_to": list(loc_a),
                "admin_action": True,
            }
            self._commit(session, record, store, events.PLAYERS_SWAPPED, actor.identity, details, audit=True)
            return RoomContext(tournament, store, (loc_a, loc_b))

    def remove_player(self, session: Session, actor: Actor, tournament_id: int, player_id: str) -> RoomContext:
        self.gateway.require_admin(actor, "remove players")
        with self._room(session, tournament_id) as (tournament, record, store):
            location = self.engine.remove_player(store, actor, player_id)
            details = {
                "player_id": player_id,
                "previous_team": location[0],
                "previous_slot": location[1],
                "admin_action": True,
            }
            self._commit(session, record, store, events.PLAYER_REMOVED, actor.identity, details, audit=True)
            return RoomContext(tournament, store, location)

    def set_slot_lock(
        self,
        session: Session,
        actor: Actor,
        tournament_id: int,
        team_number: int,
        slot_number: int,
        locked: bool,
    ) -> RoomContext:
        self.gateway.require_admin(actor, "lock slots")
        with self._room(session, tournament_id) as (tournament, record, store):
            changed = self.engine.set_slot_lock(store, actor, team_number, slot_number, locked)
            if changed:
                self._commit(
                    session,
                    record,
                    store,
                    events.SLOT_LOCKED if locked else events.SLOT_UNLOCKED,
                    actor.identity,
                    {"team_number": team_number, "slot_number": slot_number, "action": "lock" if locked else "unlock"},
                    audit=True,
                )
            return RoomContext(tournament, store, changed)

    def set_room_lock(self, session: Session, actor: Actor, tournament_id: int, locked: bool) -> RoomContext:
        self.gateway.require_admin(actor, "lock the room")
        with self._room(session, tournament_id) as (tournament, record, store):
            changed = self.engine.set_room_lock(store, actor, locked)
            if changed:
                self._commit(
                    session,
                    record,
                    store,
                    events.SLOTS_LOCKED if locked else events.SLOTS_UNLOCKED,
                    actor.identity,
                    {"action": "lock" if locked else "unlock"},
                    audit=True,
                )
                logger.info(
                    "Admin %s %s room for tournament %d",
                    actor.identity,
                    "locked" if locked else "unlocked",
                    tournament_id,
                )
            return RoomContext(tournament, store, changed)

    def update_settings(self, session: Session, actor: Actor, tournament_id: int, partial: Dict[str, Any]) -> RoomContext:
        self.gateway.require_admin(actor, "change room settings")
        with self._room(session, tournament_id) as (tournament, record, store):
            changed = self.engine.update_settings(store, actor, partial)
            if changed:
                details = {k: (v.isoformat() if isinstance(v, datetime) else v) for k, v in changed.items()}
                self._commit(session, record, store, events.SETTINGS_UPDATED, actor.identity, details, audit=True)
                if "slot_change_deadline" in changed:
                    self._schedule(tournament, store)
            return RoomContext(tournament, store, changed)

    def release_credentials(
        self,
        session: Session,
        actor: Actor,
        tournament_id: int,
        room_id: str,
        password: str,
        room_map: Optional[str] = None,
        perspective: Optional[str] = None,
    ) -> RoomContext:
        self.gateway.require_admin(actor, "release room credentials")
        with self._room(session, tournament_id) as (tournament, record, store):
            directory.release_room_credentials(
                session, tournament, room_id, password, room_map=room_map, perspective=perspective, now=self.clock()
            )
            released = {"map": tournament.room_map, "perspective": tournament.room_perspective}
            self._commit(
                session,
                record,
                store,
                events.ROOM_CREDENTIALS_RELEASED,
                actor.identity,
                {"room_id": room_id, "password": password, **released},
                audit=True,
                audit_details={"room_id": room_id, **released},
            )
            session.refresh(tournament)
            return RoomContext(tournament, store)

    # ------------------------------------------------------------------
    # Tournament lifecycle signals
    # ------------------------------------------------------------------

    def register_participant(
        self,
        session: Session,
        tournament: Tournament,
        user_id: str,
        display_name: Optional[str] = None,
    ) -> Optional[Location]:
        """
        Join flow hook: seat a new participant when the room auto-assigns.

        The caller has already added the membership row (not yet committed
        is fine). Raises Full when there is no free slot so the join can fail.
        """
        with self.writer_locks.hold(tournament.id):
            record, store = self._ensure_room(session, tournament)
            if store.is_archived or not store.settings.auto_assign_teams:
                return None
            result = self.engine.auto_assign(store, user_id)
            if result.moved:
                self._commit(
                    session,
                    record,
                    store,
                    events.PLAYER_ASSIGNED,
                    user_id,
                    {
                        "player_id": user_id,
                        "display_name": display_name,
                        "team_number": result.to_location[0],
                        "slot_number": result.to_location[1],
                    },
                )
            return result.to_location

    def tournament_updated(self, session: Session, tournament: Tournament) -> None:
        """Start date or status changed upstream: reschedule the lock, or archive the room."""
        with self.writer_locks.hold(tournament.id):
            record = self._load_record(session, tournament.id)
            if record is None:
                return
            store = RoomSlotStore.from_record(record)
            if tournament.status not in OPEN_STATUSES:
                if not store.is_archived:
                    store.archive(now=self.clock())
                    store.to_record(record)
                    session.add(record)
                    session.commit()
                    logger.info("Archived room for tournament %d (%s)", tournament.id, tournament.status)
                self.scheduler.cancel(tournament.id)
                return
            self._schedule(tournament, store)

    # ------------------------------------------------------------------
    # Live updates
    # ------------------------------------------------------------------

    def subscribe(self, tournament_id: int, callback: Subscriber) -> Subscription:
        return self.broadcaster.subscribe(tournament_id, callback)

    def shutdown(self) -> None:
        self.scheduler.shutdown()


def room_stats(store: RoomSlotStore) -> Dict[str, Any]:
    total_slots = store.capacity
    occupied = store.total_players
    complete = [t for t in store.teams if t.is_complete]
    return {
        "total_slots": total_slots,
        "occupied_slots": occupied,
        "available_slots": total_slots - occupied,
        "complete_teams": len(complete),
        "incomplete_teams": len([t for t in store.teams if not t.is_complete and t.player_count > 0]),
        "empty_teams": len([t for t in store.teams if t.player_count == 0]),
        "total_teams": store.max_teams,
        "occupancy_rate": round(occupied / total_slots * 100, 1) if total_slots else 0.0,
        "team_completion_rate": round(len(complete) / store.max_teams * 100, 1) if store.max_teams else 0.0,
        "players_per_team": [
            {
                "team_number": t.team_number,
                "player_count": t.player_count,
                "is_complete": t.is_complete,
                "captain": t.captain,
            }
            for t in store.teams
        ],
    }


_room_slot_service: Optional[RoomSlotService] = None


def get_room_slot_service() -> RoomSlotService:
    """Get or create the singleton RoomSlotService instance."""
    global _room_slot_service
    if _room_slot_service is None:
        _room_slot_service = RoomSlotService()
    return _room_slot_service
