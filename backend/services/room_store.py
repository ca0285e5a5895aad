import logging
import random
import string
from typing import Dict, List, Optional

from errors import RoomNotFound
from models.game import Room, RoomSettings

logger = logging.getLogger(__name__)

_CODE_ALPHABET = string.ascii_uppercase + string.digits


class RoomStore:
    """
    In-process registry of live rooms, keyed by room code.
    In-progress game state is deliberately not persisted across restarts.
    """

    def __init__(self, rng: Optional[random.Random] = None):
        self._rooms: Dict[str, Room] = {}
        self._rng = rng or random.Random()

    def _generate_code(self) -> str:
        while True:
            code = "".join(self._rng.choice(_CODE_ALPHABET) for _ in range(6))
            if code not in self._rooms:
                return code

    def create_room(self, host_id: str, settings: Optional[RoomSettings] = None) -> Room:
        room = Room(
            code=self._generate_code(),
            host_id=host_id,
            settings=settings or RoomSettings(),
        )
        self._rooms[room.code] = room
        logger.info(f"[{room.code}] Room created (host={host_id})")
        return room

    def get_room(self, code: str) -> Room:
        room = self._rooms.get(code.upper())
        if room is None:
            raise RoomNotFound(f"Room {code} not found")
        return room

    def find_room(self, code: str) -> Optional[Room]:
        return self._rooms.get(code.upper())

    def delete_room(self, code: str) -> Optional[Room]:
        return self._rooms.pop(code.upper(), None)

    def list_rooms(self) -> List[Room]:
        return list(self._rooms.values())


_room_store: Optional["RoomStore"] = None


def get_room_store() -> "RoomStore":
    """Lazy singleton — the process-wide room registry.
    Use as a FastAPI dependency: Depends(get_room_store)
    """
    global _room_store
    if _room_store is None:
        _room_store = RoomStore()
    return _room_store
