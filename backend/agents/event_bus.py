"""
Game Event Bus — synchronous fan-out of room lifecycle events.

Events are delivered on the publishing turn, at most once, in subscription
order. Nothing is stored or replayed.
"""
import logging
from enum import Enum
from typing import Any, Callable, Dict, List

logger = logging.getLogger(__name__)


class GameEventType(str, Enum):
    GAME_STARTED = "gameStarted"            # {all_players}
    DAY_PHASE_STARTED = "dayPhaseStarted"   # {day}
    VOTE_RECEIVED = "voteReceived"          # {voter_player_id, target_player_id, phase}
    PLAYER_ELIMINATED = "playerEliminated"  # {eliminated_player_id, player_role}


Subscriber = Callable[[GameEventType, Dict[str, Any]], None]


class GameEventBus:

    def __init__(self, room_code: str = ""):
        self.room_code = room_code
        self._subscribers: List[Subscriber] = []

    def subscribe(self, handler: Subscriber) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: Subscriber) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def publish(self, event_type: GameEventType, payload: Dict[str, Any]) -> None:
        for handler in list(self._subscribers):
            try:
                handler(event_type, payload)
            except Exception:
                # One broken subscriber must not starve the rest
                logger.warning(
                    f"[{self.room_code}] Subscriber {handler!r} failed on {event_type.value}",
                    exc_info=True,
                )
