"""
Room broadcast channel: per-tournament publish/subscribe of room events.

Every event carries the full room snapshot plus its ``sequence`` (the room
revision), so a client that missed an event recovers on the next one.

``InProcessBroadcastChannel`` delivers to callbacks registered in this
process (WebSocket connections, tests). A subscriber that raises is logged
and skipped; the others still receive the event.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List, Optional

from gameon.utils.timestamps import utcnow

logger = logging.getLogger(__name__)

PLAYER_MOVED = "playerMoved"
PLAYER_ASSIGNED = "playerAssigned"
PLAYER_REMOVED = "playerRemoved"
PLAYERS_SWAPPED = "playersSwapped"
SLOT_LOCKED = "slotLocked"
SLOT_UNLOCKED = "slotUnlocked"
SLOTS_LOCKED = "slotsLocked"
SLOTS_UNLOCKED = "slotsUnlocked"
SETTINGS_UPDATED = "settingsUpdated"
ROOM_CREDENTIALS_RELEASED = "roomCredentialsReleased"
ROOM_SNAPSHOT = "roomSnapshot"

Subscriber = Callable[[Dict[str, Any]], None]


def build_event(
    name: str,
    tournament_id: int,
    room: Dict[str, Any],
    actor: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    return {
        "event": name,
        "tournament_id": tournament_id,
        "sequence": room.get("revision"),
        "actor": actor,
        "details": details or {},
        "room": room,
        "published_at": utcnow().isoformat(),
    }


class Subscription:
    def __init__(self, channel: "BroadcastChannel", tournament_id: int, callback: Subscriber):
        self.channel = channel
        self.tournament_id = tournament_id
        self.callback = callback

    def close(self) -> None:
        self.channel.unsubscribe(self.tournament_id, self.callback)


class BroadcastChannel(ABC):
    @abstractmethod
    def publish(self, tournament_id: int, event: Dict[str, Any]) -> int:
        """Deliver ``event`` to every subscriber of ``tournament_id``; returns the delivered count."""

    @abstractmethod
    def subscribe(self, tournament_id: int, callback: Subscriber) -> Subscription:
        pass

    @abstractmethod
    def unsubscribe(self, tournament_id: int, callback: Subscriber) -> None:
        pass

    @abstractmethod
    def subscriber_count(self, tournament_id: int) -> int:
        pass


class InProcessBroadcastChannel(BroadcastChannel):
    def __init__(self):
        self._subscribers: Dict[int, List[Subscriber]] = {}
        self._lock = threading.Lock()

    def publish(self, tournament_id: int, event: Dict[str, Any]) -> int:
        with self._lock:
            subscribers = list(self._subscribers.get(tournament_id, []))

        delivered = 0
        for callback in subscribers:
            try:
                callback(event)
                delivered += 1
            except Exception:
                logger.exception(
                    "Subscriber failed for %s on tournament %d", event.get("event"), tournament_id
                )
        return delivered

    def subscribe(self, tournament_id: int, callback: Subscriber) -> Subscription:
        with self._lock:
            self._subscribers.setdefault(tournament_id, []).append(callback)
        return Subscription(self, tournament_id, callback)

    def unsubscribe(self, tournament_id: int, callback: Subscriber) -> None:
        with self._lock:
            callbacks = self._subscribers.get(tournament_id, [])
            if callback in callbacks:
                callbacks.remove(callback)
            if not callbacks:
                self._subscribers.pop(tournament_id, None)

    def subscriber_count(self, tournament_id: int) -> int:
        with self._lock:
            return len(self._subscribers.get(tournament_id, []))
