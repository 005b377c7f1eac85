import logging
import random
import string
from typing import Callable, Dict, List, Optional, Tuple

from syncroom.models.room import Room

logger = logging.getLogger(__name__)

ROOM_ID_ALPHABET = string.ascii_uppercase + string.digits
ROOM_ID_LENGTH = 5
MAX_ID_ATTEMPTS = 10


def generate_room_id(rng: Optional[random.Random] = None) -> str:
    rng = rng or random
    return "".join(rng.choice(ROOM_ID_ALPHABET) for _ in range(ROOM_ID_LENGTH))


class RoomRegistry:
    """In-memory store of active rooms.

    A room lives here exactly as long as it has members. Nothing is
    persisted; a fresh registry is empty.
    """

    def __init__(self, id_factory: Callable[[], str] = generate_room_id):
        self._rooms: Dict[str, Room] = {}
        self._id_factory = id_factory

    def __len__(self) -> int:
        return len(self._rooms)

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms

    def create_room(self, creator_sid: str) -> Room:
        room_id = self._id_factory()
        attempts = 1
        while room_id in self._rooms and attempts < MAX_ID_ATTEMPTS:
            room_id = self._id_factory()
            attempts += 1
        if room_id in self._rooms:
            raise RuntimeError("could not allocate an unused room id")

        room = Room(
            id=room_id,
            host_sid=creator_sid,
            members={creator_sid},
        )
        self._rooms[room_id] = room
        logger.info(f"Created room {room_id} for {creator_sid}")
        return room

    def get_room(self, room_id: Optional[str]) -> Optional[Room]:
        if not isinstance(room_id, str):
            return None
        return self._rooms.get(room_id)

    def add_user(self, room_id: str, sid: str) -> Optional[Room]:
        room = self.get_room(room_id)
        if room:
            room.members.add(sid)
        return room

    def remove_user(self, room_id: str, sid: str) -> Optional[Room]:
        """Remove `sid` from the room and delete the room once it is empty.

        Returns the room (possibly already deleted) or None if it did not exist.
        """
        room = self.get_room(room_id)
        if room:
            room.members.discard(sid)
            if not room.members:
                del self._rooms[room_id]
                logger.info(f"Room {room_id} is empty, deleted")
        return room

    def remove_connection_everywhere(self, sid: str) -> List[Tuple[str, int]]:
        """Drop `sid` from every room it belongs to.

        Returns (room_id, remaining member count) for each affected room.
        """
        affected = []
        for room_id, room in list(self._rooms.items()):
            if sid in room.members:
                self.remove_user(room_id, sid)
                affected.append((room_id, len(room.members)))
        return affected
