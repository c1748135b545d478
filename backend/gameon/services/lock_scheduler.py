"""
Lock Transition Scheduler: timed Open -> Locked transition of rooms.

A room locks at the earlier of
  - tournament start minus ``LOCK_WINDOW`` (default 10 minutes)
  - ``settings.slot_change_deadline``, when set

Only one timer is pending per tournament. ``schedule`` always cancels the
previous timer before arming a new one, so a changed start date or deadline
never fires on a stale time. There is no automatic Locked -> Open; only an
administrator unlocks.

Timers and the clock are injected so the transition can be driven by a
simulated clock in tests. The default timer is ``threading.Timer``.
"""

import logging
import os
import threading
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from gameon.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

LOCK_WINDOW = timedelta(minutes=int(os.getenv("ROOM_LOCK_WINDOW_MINUTES", "10")))


class TimerHandle(Protocol):
    def start(self) -> None: ...

    def cancel(self) -> None: ...


TimerFactory = Callable[..., TimerHandle]


def thread_timer(delay_seconds: float, callback: Callable, args: tuple) -> TimerHandle:
    timer = threading.Timer(delay_seconds, callback, args=args)
    timer.daemon = True
    return timer


def compute_lock_time(
    start_date: Optional[datetime],
    slot_change_deadline: Optional[datetime],
    window: timedelta = LOCK_WINDOW,
) -> Optional[datetime]:
    """Earliest of (start - window) and the slot change deadline; None if neither is set."""
    candidates = []
    if start_date is not None:
        candidates.append(start_date - window)
    if slot_change_deadline is not None:
        candidates.append(slot_change_deadline)
    return min(candidates) if candidates else None


def is_lock_due(
    now: datetime,
    lock_time: Optional[datetime],
    applied_for: Optional[datetime],
) -> bool:
    """True when ``lock_time`` has passed and has not been applied yet."""
    return lock_time is not None and now >= lock_time and applied_for != lock_time


class LockTransitionScheduler:
    def __init__(
        self,
        on_due: Callable[[int, datetime], None],
        clock: Callable[[], datetime] = utcnow,
        timer_factory: TimerFactory = thread_timer,
        window: timedelta = LOCK_WINDOW,
    ):
        self._on_due = on_due
        self._clock = clock
        self._timer_factory = timer_factory
        self.window = window
        self._timers: Dict[int, TimerHandle] = {}
        self._fire_times: Dict[int, datetime] = {}
        self._lock = threading.Lock()

    def lock_time_for(self, start_date: Optional[datetime], slot_change_deadline: Optional[datetime]) -> Optional[datetime]:
        return compute_lock_time(start_date, slot_change_deadline, self.window)

    def schedule(
        self,
        tournament_id: int,
        start_date: Optional[datetime],
        slot_change_deadline: Optional[datetime],
        applied_for: Optional[datetime] = None,
    ) -> Optional[datetime]:
        """
        (Re)arm the lock timer for a tournament.

        Returns the fire time, or None when nothing is pending (no deadline
        configured, or this lock time was already applied).
        """
        fire_at = self.lock_time_for(start_date, slot_change_deadline)
        with self._lock:
            self._cancel_locked(tournament_id)
            if fire_at is None or fire_at == applied_for:
                return None
            delay = max(0.0, (fire_at - self._clock()).total_seconds())
            timer = self._timer_factory(delay, self._fire, (tournament_id, fire_at))
            self._timers[tournament_id] = timer
            self._fire_times[tournament_id] = fire_at
            timer.start()

        logger.info("Room lock for tournament %d scheduled at %s (in %.0fs)", tournament_id, fire_at.isoformat(), delay)
        return fire_at

    def cancel(self, tournament_id: int) -> None:
        with self._lock:
            self._cancel_locked(tournament_id)

    def fire_time(self, tournament_id: int) -> Optional[datetime]:
        with self._lock:
            return self._fire_times.get(tournament_id)

    def pending(self) -> Dict[int, datetime]:
        with self._lock:
            return dict(self._fire_times)

    def shutdown(self) -> None:
        with self._lock:
            for tournament_id in list(self._timers):
                self._cancel_locked(tournament_id)

    def _cancel_locked(self, tournament_id: int) -> None:
        timer = self._timers.pop(tournament_id, None)
        self._fire_times.pop(tournament_id, None)
        if timer is not None:
            timer.cancel()

    def _fire(self, tournament_id: int, fire_at: datetime) -> None:
        with self._lock:
            if self._fire_times.get(tournament_id) != fire_at:
                logger.warning("Ignoring stale lock timer for tournament %d (%s)", tournament_id, fire_at.isoformat())
                return
            self._timers.pop(tournament_id, None)
            self._fire_times.pop(tournament_id, None)

        try:
            self._on_due(tournament_id, fire_at)
        except Exception:
            # Timer threads have no caller; the next mutation re-checks the deadline
            logger.exception("Automatic room lock failed for tournament %d", tournament_id)
